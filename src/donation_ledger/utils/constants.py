"""
Constants for the donation ledger.

This module defines system-wide constants including:
- Application metadata
- Reserved donation categories
- Consumption defaults
- Actor roles
- Field limits
"""

# ============================================================================
# Application Metadata
# ============================================================================

APP_NAME = "Donation Ledger"
APP_VERSION = "0.1.0"
DATABASE_VERSION = "1.0"
DATABASE_FILENAME = "donation_ledger.db"

# ============================================================================
# Donation Categories
# ============================================================================

# Reserved category: switches a donation to per-recipient delivery tracking
GIFT_CATEGORY = "Birthday Gift"

# Discriminator values for the donation variants
DONATION_KIND_STOCK = "stock"
DONATION_KIND_GIFT = "gift"

# ============================================================================
# Consumption Defaults
# ============================================================================

# An attended delivery of a donation with no amount consumes exactly one unit
DEFAULT_CONSUMED_AMOUNT = 1

# ============================================================================
# Roles
# ============================================================================

ROLE_ADMIN = "admin"
ROLE_USER = "user"

# ============================================================================
# Field Limits
# ============================================================================

MIN_DONOR_NAME_LENGTH = 2
MAX_NAME_LENGTH = 200
MAX_CATEGORY_LENGTH = 100
MAX_UNIT_LENGTH = 50

# ============================================================================
# Concurrency Defaults
# ============================================================================

DEFAULT_LOCK_TIMEOUT_SECONDS = 5.0
DEFAULT_CONFLICT_RETRIES = 3
