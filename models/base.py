from sqlalchemy.orm import declarative_base
import enum

Base = declarative_base()


# ============================================================================
# ENUMS
# ============================================================================

class SourceType(str, enum.Enum):
    """API families; each has its own host, auth scheme and raw landing partition"""
    REST = "rest"              # Economic REST (restapi.e-conomic.com)
    OPENAPI = "openapi"        # Economic OpenAPI bulk endpoints (apis.e-conomic.com)
    PRESTASHOP = "prestashop"  # PrestaShop web service


class PaginationStyle(str, enum.Enum):
    """Wire protocol used to walk an endpoint's pages"""
    OFFSET = "offset"
    CURSOR = "cursor"


class WatermarkField(str, enum.Enum):
    """Which high-water mark an endpoint advances"""
    NONE = "none"
    LAST_UPDATED_TIMESTAMP = "last_updated_timestamp"
    LAST_NUMERIC_ID = "last_numeric_id"


class SyncMode(str, enum.Enum):
    """Orchestrator run mode"""
    FULL = "full"
    INCREMENTAL = "incremental"


class TerminalReason(str, enum.Enum):
    """Why the pagination driver stopped"""
    EMPTY_PAGE = "empty_page"
    SHORT_PAGE = "short_page"
    NO_CURSOR = "no_cursor"
    PAGE_LIMIT = "page_limit"
