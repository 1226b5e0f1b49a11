"""Engine constants."""

# Defaults used when bootstrapping the first automation config
DEFAULT_CONFIG_NAME = "Default"
DEFAULT_FIRST_CONTACT_SLA_MINUTES = 30
DEFAULT_WARNING_PERCENTAGE = 75
DEFAULT_CRITICAL_PERCENTAGE = 90
DEFAULT_WORKING_HOURS_START = "08:00"
DEFAULT_WORKING_HOURS_END = "18:00"
DEFAULT_TIMEZONE = "America/Sao_Paulo"
DEFAULT_HOLIDAY_COUNTRY = "BR"
DEFAULT_CONTINUITY_WINDOW_DAYS = 30
DEFAULT_RETENTION_DAYS = 30
DEFAULT_INACTIVITY_PERIOD_DAYS = 7
DEFAULT_CONTACT_ATTEMPTS = 3

# Health probe lookahead
EXPIRING_SOON_WINDOW_MINUTES = 60

# Distributed lock keys (prefixed by job name)
SCHEDULER_LOCK_PREFIX = "sla_cascade:lock:"

# Country calling code stripped during phone matching
DEFAULT_PHONE_COUNTRY_CODE = "55"
