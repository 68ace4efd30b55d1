"""Application-wide constants."""

PROJECT_NAME = "DictateMED"
API_V1_STR = "/api/v1"
