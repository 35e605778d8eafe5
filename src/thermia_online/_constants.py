"""Internal constants for the Thermia Online cloud API."""

from __future__ import annotations

API_TYPE_CLASSIC = "classic"
API_TYPE_GENESIS = "genesis"

CONFIG_URLS_BY_API_TYPE: dict[str, str] = {
    API_TYPE_CLASSIC: "https://online.thermia.se/api/configuration",
    API_TYPE_GENESIS: "https://online-genesis.thermia.se/api/configuration",
}

# Azure AD B2C sign-in (custom policy)
AZURE_AUTH_URL = (
    "https://thermialogin.b2clogin.com/thermialogin.onmicrosoft.com/b2c_1a_signuporsigninonline"
)
AZURE_AUTHORIZE_URL = f"{AZURE_AUTH_URL}/oauth2/v2.0/authorize"
AZURE_TOKEN_URL = f"{AZURE_AUTH_URL}/oauth2/v2.0/token"
AZURE_SELF_ASSERTED_URL = f"{AZURE_AUTH_URL}/SelfAsserted"
AZURE_CONFIRM_URL = f"{AZURE_AUTH_URL}/api/CombinedSigninAndSignup/confirmed"
AZURE_POLICY = "B2C_1A_SignUpOrSigninOnline"
AZURE_CLIENT_ID_AND_SCOPE = "09ea4903-9e95-45fe-ae1f-e3b7d32fa385"
AZURE_REDIRECT_URI = "https://online-genesis.thermia.se/login"

AZURE_FORM_HEADERS: dict[str, str] = {
    "Content-Type": "application/x-www-form-urlencoded; charset=UTF-8",
}

VERIFIER_LENGTH = 43
"""PKCE verifier length (RFC 7636 minimum)."""

REFRESH_TOKEN_VALIDITY = 6 * 3600
"""Assumed refresh-token lifetime in seconds.

The identity provider does not report one, so this is a client-side guess.
"""

REQUEST_TIMEOUT = 15  # seconds

CLIENT_UUID = "api-client-uuid"

DATETIME_FORMAT = "%Y-%m-%dT%H:%M:%S"

# ---------------------------------------------------------------------------
# Register groups
# ---------------------------------------------------------------------------

REG_GROUP_TEMPERATURES = "REG_GROUP_TEMPERATURES"
REG_GROUP_OPERATIONAL_STATUS = "REG_GROUP_OPERATIONAL_STATUS"
REG_GROUP_OPERATIONAL_TIME = "REG_GROUP_OPERATIONAL_TIME"
REG_GROUP_OPERATIONAL_OPERATION = "REG_GROUP_OPERATIONAL_OPERATION"
REG_GROUP_HOT_WATER = "REG_GROUP_HOT_WATER"

UPDATE_GROUPS: tuple[str, ...] = (
    REG_GROUP_HOT_WATER,
    REG_GROUP_OPERATIONAL_OPERATION,
    REG_GROUP_OPERATIONAL_STATUS,
    REG_GROUP_OPERATIONAL_TIME,
    REG_GROUP_TEMPERATURES,
)

# ---------------------------------------------------------------------------
# Register names (vary between controller generations)
# ---------------------------------------------------------------------------

REG_SUPPLY_LINE = "REG_SUPPLY_LINE"
REG_OPER_DATA_SUPPLY_MA_SA = "REG_OPER_DATA_SUPPLY_MA_SA"
REG_DESIRED_SUPPLY_LINE = "REG_DESIRED_SUPPLY_LINE"
REG_DESIRED_SUPPLY_LINE_TEMP = "REG_DESIRED_SUPPLY_LINE_TEMP"
REG_DESIRED_SYS_SUPPLY_LINE_TEMP = "REG_DESIRED_SYS_SUPPLY_LINE_TEMP"
REG_RETURN_LINE = "REG_RETURN_LINE"
REG_OPER_DATA_RETURN = "REG_OPER_DATA_RETURN"
REG_OPER_DATA_BUFFER_TANK = "REG_OPER_DATA_BUFFER_TANK"
REG_BRINE_OUT = "REG_BRINE_OUT"
REG_BRINE_IN = "REG_BRINE_IN"
REG_ACTUAL_POOL_TEMP = "REG_ACTUAL_POOL_TEMP"
REG_COOL_SENSOR_TANK = "REG_COOL_SENSOR_TANK"
REG_COOL_SENSOR_SUPPLY = "REG_COOL_SENSOR_SUPPLY"

REG_INTEGRAL_LSD = "REG_INTEGRAL_LSD"
REG_PID = "REG_PID"

REG_OPER_TIME_COMPRESSOR = "REG_OPER_TIME_COMPRESSOR"
REG_OPER_TIME_HOT_WATER = "REG_OPER_TIME_HOT_WATER"
REG_OPER_TIME_IMM1 = "REG_OPER_TIME_IMM1"
REG_OPER_TIME_IMM2 = "REG_OPER_TIME_IMM2"
REG_OPER_TIME_IMM3 = "REG_OPER_TIME_IMM3"

REG_OPERATIONMODE = "REG_OPERATIONMODE"
REG_HOT_WATER_STATUS = "REG_HOT_WATER_STATUS"
REG__HOT_WATER_BOOST = "REG__HOT_WATER_BOOST"

REG_VALUE_PREFIX = "REG_VALUE_"

# ---------------------------------------------------------------------------
# Numeric register ids used to bootstrap a heat pump from ``regdata``
# ---------------------------------------------------------------------------

REG_ID_HOT_WATER_STATUS = 14
REG_ID_HOT_WATER_BOOST = 24
REG_ID_OPERATIONMODE = 4

# ---------------------------------------------------------------------------
# Operational status names
# ---------------------------------------------------------------------------

STATUS_COMPRESSOR = "COMPR"
STATUS_BRINE_PUMP = "BRINEPUMP"
STATUS_RADIATOR_PUMP = "RADIATORPUMP"
STATUS_COOLING = "COOLING"
STATUS_HOT_WATER = "HOT_WATER"
STATUS_HEATING = "HEATING"
