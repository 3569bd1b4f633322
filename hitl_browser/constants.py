"""Site URLs, CSS selectors, login signals and extraction limits."""

from .config import XHS_BASE_URL

# ── URLs ─────────────────────────────────────────────────────────────────────

XHS_EXPLORE_URL = f"{XHS_BASE_URL}/explore"
XHS_SEARCH_URL = f"{XHS_BASE_URL}/search_result"

YELP_BASE = "https://www.yelp.com"
YELP_SEARCH_URL = f"{YELP_BASE}/search"

TRIPADVISOR_BASE = "https://www.tripadvisor.com"
TRIPADVISOR_SEARCH_URL = f"{TRIPADVISOR_BASE}/Search"

# ── Site identifiers ─────────────────────────────────────────────────────────

DEFAULT_SITE = "xhs"

SITE_ALIASES = {
    "xhs": "xhs",
    "xiaohongshu": "xhs",
    "yelp": "yelp",
    "tripadvisor": "tripadvisor",
    "trip_advisor": "tripadvisor",
    "trip-advisor": "tripadvisor",
}

# ── Extraction limits ────────────────────────────────────────────────────────

DEFAULT_MAX_NOTES = 20
DEFAULT_SCROLL_TIMES = 2

XHS_MAX_NOTES = 50
XHS_MAX_SCROLLS = 10

REVIEW_SITE_MAX_NOTES = 20
REVIEW_SITE_MAX_SCROLLS = 6

# ── CSS Selectors ────────────────────────────────────────────────────────────

SELECTORS = {
    # Xiaohongshu
    "xhs_result_link": 'a[href*="/explore/"], a[href*="/discovery/item/"]',
    "xhs_avatar": 'img[class*="avatar"], img[alt*="头像"], [class*="avatar"], [aria-label*="头像"]',
    "xhs_user_link": 'a[href*="/user/"]',
    "xhs_user_menu": '[class*="user"], [class*="profile"], [aria-label*="个人"], [data-testid*="user"]',
    "xhs_author": '[class*="author"], [class*="user"]',

    # Yelp
    "yelp_result_link": 'a[href^="/biz/"]',
    "yelp_snippet": 'p[class*="snippet"], span[class*="snippet"]',
    "yelp_rating": '[aria-label*="star rating"], [aria-label*="rating"]',
    "yelp_location": 'address, [class*="address"], [class*="location"]',

    # TripAdvisor
    "tripadvisor_result_link": (
        'a[href*="/Restaurant_Review-"], a[href*="/Attraction_Review-"], a[href*="/Hotel_Review-"]'
    ),
    "tripadvisor_snippet": '[class*="snippet"], [class*="summary"]',
    "tripadvisor_rating": '[aria-label*="bubbles"], [aria-label*="rating"]',
    "tripadvisor_location": '[data-test-target*="address"], [class*="address"], [class*="location"]',
}

# ── Login Signals ────────────────────────────────────────────────────────────

XHS_LOGIN_BUTTON_TEXTS = ["登录", "注册"]
XHS_CREATOR_BUTTON_TEXTS = ["发布", "创作", "笔记"]

# ── Engagement Labels ────────────────────────────────────────────────────────

XHS_LIKE_LABELS = ["赞", "点赞"]
XHS_COLLECT_LABELS = ["收藏"]
XHS_COMMENT_LABELS = ["评论"]
XHS_SHARE_LABELS = ["分享"]
XHS_LIKE_CLASS_HINTS = ["like", "zan", "dianzan", "thumb", "praise"]

# ── Block / Consent Detection ────────────────────────────────────────────────

BLOCK_INDICATORS = [
    "unusual",
    "robot",
    "captcha",
    "verify",
    "access denied",
    "consent",
]
