from typing import Dict

CARRIER_NAMES: Dict[str, str] = {
    "MS": "EgyptAir",
    "EK": "Emirates",
    "TK": "Turkish Airlines",
    "QR": "Qatar Airways",
    "SV": "Saudi Arabian Airlines",
    "KU": "Kuwait Airways",
    "GF": "Gulf Air",
    "UX": "Air Europa",
    "RJ": "Royal Jordanian",
    "WY": "Oman Air",
    "ET": "Ethiopian Airlines",
    "A3": "Aegean Airlines",
    "XY": "Flynas",
    "VF": "Ajet",
    "ME": "Middle East Airlines",
    "EY": "Etihad Airways",
    "NE": "Nile Air",
    "NP": "Nemsa Airlines",
    "AH": "Air Algerie",
    "X1": "Hahn Air",
    "JL": "Japan Airlines",
    "FZ": "FlyDubai",
    "PK": "Pakistan Airlines",
    "AI": "Air India",
    "PC": "Pegasus Airlines",
    "AZ": "ITA Airways",
    "XQ": "SunExpress",
    "KQ": "Kenya Airways",
    "3U": "Sichuan Airlines",
    "MH": "Malaysia Airlines",
    "SM": "Air Cairo",
    "G9": "Air Arabia",
    "F3": "flyadeal",
    "E5": "Air Arabia Egypt",
    "J9": "Jazeera Airways",
    "BA": "British Airways",
    "LH": "Lufthansa",
    "OS": "Austrian Airlines",
    "CA": "Air China",
    "I2": "Iberia Express",
    "LX": "Swiss International Air Lines",
    "HU": "Hainan Airlines",
    "MU": "China Eastern Airlines",
    "AF": "Air France",
    "SQ": "Singapore Airlines",
    "AT": "Royal Air Maroc",
    "6E": "IndiGo",
    "9P": "Fly Jinnah",
    "BS": "US-Bangla Airlines",
    "IX": "Air India Express",
    "J2": "Azerbaijan Airlines",
    "OV": "SalamAir",
    "EW": "Eurowings",
    "KL": "KLM Royal Dutch Airlines",
    "LO": "LOT Polish Airlines",
    "TO": "Transavia France",
    "TU": "Tunisair",
    "VY": "Vueling",
}

CABIN_NAMES: Dict[str, str] = {
    "e": "Economy",
    "p": "Premium Economy",
    "b": "Business",
    "f": "First Class",
}

COUNTRY_CODES: Dict[str, str] = {
    "egypt": "EG",
    "egyptian": "EG",
    "saudi arabia": "SA",
    "saudi": "SA",
    "united arab emirates": "AE",
    "uae": "AE",
    "jordan": "JO",
    "lebanon": "LB",
    "syria": "SY",
    "syrian": "SY",
    "iraq": "IQ",
    "kuwait": "KW",
    "bahrain": "BH",
    "qatar": "QA",
    "oman": "OM",
    "yemen": "YE",
    "palestine": "PS",
    "turkey": "TR",
    "turkish": "TR",
    "iran": "IR",
    "afghanistan": "AF",
    "pakistan": "PK",
    "india": "IN",
    "bangladesh": "BD",
    "sri lanka": "LK",
    "thailand": "TH",
    "malaysia": "MY",
    "singapore": "SG",
    "indonesia": "ID",
    "philippines": "PH",
    "vietnam": "VN",
    "china": "CN",
    "japan": "JP",
    "south korea": "KR",
    "korea": "KR",
    "united kingdom": "GB",
    "uk": "GB",
    "france": "FR",
    "germany": "DE",
    "italy": "IT",
    "spain": "ES",
    "united states": "US",
    "usa": "US",
    "canada": "CA",
    "australia": "AU",
}


def carrier_name(code: str | None) -> str:
    if not code:
        return ""
    return CARRIER_NAMES.get(code.upper(), code)


def cabin_name(code: str | None) -> str:
    return CABIN_NAMES.get((code or "").lower(), "Economy")


def country_code(value: str | None) -> str | None:
    """Country name or code -> ISO 3166-1 alpha-2, None when unknown."""
    if not value:
        return None
    normalized = value.strip().lower()
    if normalized in COUNTRY_CODES:
        return COUNTRY_CODES[normalized]
    if len(normalized) == 2 and normalized.isalpha():
        return normalized.upper()
    return None
