APP_NAME = "PictoVault"
VERSION = "1.0.0"
SCHEMA_VERSION = "1"

ARASAAC_API_BASE = "https://api.arasaac.org/v1"
ARASAAC_STATIC_BASE = "https://static.arasaac.org/pictograms"
DEFAULT_LICENSE = "CC BY-NC-SA 4.0 (ARASAAC / Gobierno de Aragón; author Sergio Palao)"
ASSET_PUBLIC_PREFIX = "/assets/pictograms"
