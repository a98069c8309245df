"""
NFe access key ("chave de acesso") parsing.

The access key is a 44-digit identifier that uniquely names one electronic
invoice. Every field sits at a fixed offset:

    UF(2) + AAMM(4) + CNPJ(14) + Modelo(2) + Serie(3) + Numero(9)
    + TipoEmissao(1) + Codigo(8) + DV(1)

Design Decisions:
- Parsing is pure slicing; the key is fixed-width so nothing is padded
- Invalid keys raise before any source is contacted
- The mod-11 check digit is exposed for display only and never blocks
  resolution (issuers in the wild do emit keys with bad check digits)
"""

from dataclasses import dataclass

ACCESS_KEY_LENGTH = 44

# IBGE state codes used in the first two digits of the key
STATE_CODES = {
    "11": "RO", "12": "AC", "13": "AM", "14": "RR", "15": "PA",
    "16": "AP", "17": "TO", "21": "MA", "22": "PI", "23": "CE",
    "24": "RN", "25": "PB", "26": "PE", "27": "AL", "28": "SE",
    "29": "BA", "31": "MG", "32": "ES", "33": "RJ", "35": "SP",
    "41": "PR", "42": "SC", "43": "RS", "50": "MS", "51": "MT",
    "52": "GO", "53": "DF",
}

DOCUMENT_MODELS = {
    "55": "NF-e",
    "65": "NFC-e",
    "57": "CT-e",
    "67": "CT-e OS",
    "58": "MDF-e",
}


class InvalidAccessKeyError(ValueError):
    """Raised when a string is not a structurally valid access key."""

    def __init__(self, access_key: str, reason: str) -> None:
        self.access_key = access_key
        self.reason = reason
        super().__init__(f"Invalid access key '{access_key}': {reason}")


@dataclass(frozen=True)
class AccessKeyFields:
    """
    Fields embedded in an access key.

    All values are kept as the raw digit strings found in the key.
    """
    raw: str
    state_code: str
    year: str
    month: str
    issuer_tax_id: str
    model: str
    series: str
    number: str
    control: str

    @property
    def emission_type(self) -> str:
        return self.control[0]

    @property
    def numeric_code(self) -> str:
        return self.control[1:9]

    @property
    def check_digit(self) -> str:
        return self.control[-1]

    @property
    def state(self) -> str | None:
        """UF abbreviation for the state code, None when unknown."""
        return STATE_CODES.get(self.state_code)

    @property
    def full_year(self) -> int:
        return 2000 + int(self.year)

    @property
    def model_name(self) -> str | None:
        return DOCUMENT_MODELS.get(self.model)

    @property
    def formatted(self) -> str:
        """Key split in groups of four digits, as printed on a DANFE."""
        return " ".join(self.raw[i:i + 4] for i in range(0, ACCESS_KEY_LENGTH, 4))

    @property
    def check_digit_valid(self) -> bool:
        """
        Verify the mod-11 check digit.

        Digits 1-43 are weighted 2..9 repeating from right to left.
        """
        weights = [2, 3, 4, 5, 6, 7, 8, 9]
        total = sum(
            int(digit) * weights[i % len(weights)]
            for i, digit in enumerate(reversed(self.raw[:43]))
        )
        remainder = total % 11
        expected = 0 if remainder < 2 else 11 - remainder
        return int(self.check_digit) == expected


def parse_access_key(access_key: str) -> AccessKeyFields:
    """
    Decode a 44-digit access key into its embedded fields.

    Args:
        access_key: Raw key; surrounding whitespace is ignored

    Returns:
        AccessKeyFields with each fixed-offset slice

    Raises:
        InvalidAccessKeyError: If the key is not exactly 44 ASCII digits
    """
    if access_key is None:
        raise InvalidAccessKeyError("", "missing")

    key = access_key.strip()

    if len(key) != ACCESS_KEY_LENGTH:
        raise InvalidAccessKeyError(
            key, f"expected {ACCESS_KEY_LENGTH} digits, got {len(key)}"
        )
    # str.isdigit() accepts non-ASCII digits such as "²"
    if not (key.isascii() and key.isdigit()):
        raise InvalidAccessKeyError(key, "only digits are allowed")

    return AccessKeyFields(
        raw=key,
        state_code=key[0:2],
        year=key[2:4],
        month=key[4:6],
        issuer_tax_id=key[6:20],
        model=key[20:22],
        series=key[22:25],
        number=key[25:34],
        control=key[34:44],
    )


def is_valid_access_key(access_key: str) -> bool:
    """True if the key would parse."""
    try:
        parse_access_key(access_key)
    except InvalidAccessKeyError:
        return False
    return True
