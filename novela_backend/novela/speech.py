"""
Text clean-up before speech synthesis.

The voice engine reads digits and symbols poorly, so numbers (with an optional
unit glued to them) are spelled out and anything outside a small whitelist is
dropped. Number spelling is locale specific; only Spanish is provided.
"""
import re
from typing import Dict, List

MAX_SPOKEN_NUMBER = 999999

_NUMBER_WITH_UNIT = re.compile(r"(\d+)([a-zA-Z%$]+)?")
_DIGIT = re.compile(r"\d")
_NOT_SPEAKABLE = re.compile(r"[^a-zA-ZÁÉÍÓÚáéíóúñÑüÜ¿¡!?,.\s]")
_WHITESPACE = re.compile(r"\s+")


class NumberLocale:
    """Spells numbers and units for one spoken language."""

    digit_words: List[str] = []
    units: Dict[str, str] = {}

    def number_to_words(self, n: int) -> str:
        raise NotImplementedError

    def unit_to_words(self, unit: str) -> str:
        return self.units.get(unit.lower(), unit)

    def digit_to_word(self, digit: str) -> str:
        return self.digit_words[int(digit)]


class SpanishLocale(NumberLocale):
    digit_words = ["cero", "uno", "dos", "tres", "cuatro", "cinco", "seis", "siete", "ocho", "nueve"]
    units = {
        "mm": "milímetros", "cm": "centímetros", "m": "metros", "km": "kilómetros",
        "mg": "miligramo", "g": "gramo", "kg": "kilogramo",
        "ms": "milisegundos", "s": "segundos", "min": "minutos", "h": "horas",
        "hz": "hercios", "mhz": "megahercios", "ghz": "gigahercios",
        "%": "por ciento", "usd": "dólares", "$": "dólares",
    }

    _ones = ["", "uno", "dos", "tres", "cuatro", "cinco", "seis", "siete", "ocho", "nueve"]
    _teens = ["diez", "once", "doce", "trece", "catorce", "quince",
              "dieciséis", "diecisiete", "dieciocho", "diecinueve"]
    _tens = ["", "diez", "veinte", "treinta", "cuarenta", "cincuenta",
             "sesenta", "setenta", "ochenta", "noventa"]
    _hundreds = ["", "ciento", "doscientos", "trescientos", "cuatrocientos", "quinientos",
                 "seiscientos", "setecientos", "ochocientos", "novecientos"]

    def _below_hundred(self, n: int) -> str:
        if n < 10:
            return self._ones[n]
        if n < 20:
            return self._teens[n - 10]
        if n == 20:
            return "veinte"
        tens, ones = divmod(n, 10)
        if n < 30:
            return "veinti" + self._ones[ones]
        return self._tens[tens] + (" y " + self._ones[ones] if ones else "")

    def _below_thousand(self, n: int) -> str:
        if n == 0:
            return ""
        if n == 100:
            return "cien"
        hundreds, rest = divmod(n, 100)
        prefix = self._hundreds[hundreds] + (" " if rest else "") if hundreds else ""
        return prefix + self._below_hundred(rest)

    def number_to_words(self, n: int) -> str:
        n = max(0, min(MAX_SPOKEN_NUMBER, n))
        if n == 0:
            return "cero"
        thousands, rest = divmod(n, 1000)
        words = []
        if thousands == 1:
            words.append("mil")
        elif thousands > 1:
            words.append(self._below_thousand(thousands) + " mil")
        if rest:
            words.append(self._below_thousand(rest))
        return " ".join(words).strip()


class SpeechSanitizer:
    def __init__(self, locale: NumberLocale = None):
        self.locale = locale or SpanishLocale()

    def _spell(self, match: "re.Match") -> str:
        digits, unit = match.group(1).lstrip("0") or "0", match.group(2)
        # Clamp before int() so absurdly long digit runs never get parsed
        value = MAX_SPOKEN_NUMBER if len(digits) > len(str(MAX_SPOKEN_NUMBER)) else int(digits)
        words = [self.locale.number_to_words(value)]
        if unit:
            words.append(self.locale.unit_to_words(unit))
        return " ".join(w for w in words if w)

    def sanitize(self, text: str) -> str:
        if not text:
            return ""
        spoken = _NUMBER_WITH_UNIT.sub(self._spell, text)
        spoken = _DIGIT.sub(lambda m: self.locale.digit_to_word(m.group(0)), spoken)
        spoken = _NOT_SPEAKABLE.sub(" ", spoken)
        return _WHITESPACE.sub(" ", spoken).strip()


_default = SpeechSanitizer()


def sanitize_for_speech(text: str) -> str:
    return _default.sanitize(text)
