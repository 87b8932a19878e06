"""Constants for the site crawler."""

# Paths always attempted, in order, even when never linked from the home page
CRITICAL_PATHS = [
    "/about",
    "/about-us",
    "/company",
    "/company/overview",
    "/company/profile",
    "/corporate",
    "/service",
    "/services",
]

# Business-relevant paths attempted after the critical ones
PRIORITY_PATHS = [
    "/pricing", "/price", "/plan", "/plans",
    "/faq", "/qa", "/support", "/help",
    "/contact", "/inquiry", "/access",
    "/case", "/cases", "/case-study", "/works", "/results",
    "/recruit", "/careers", "/jobs",
    "/news", "/topics", "/blog",
    "/products", "/product", "/solution", "/solutions",
    "/message", "/philosophy", "/history", "/team",
]

# Substrings that promote a discovered link into the critical tier
CRITICAL_KEYWORDS = [
    "about", "company", "corporate", "overview", "profile", "outline",
    "gaiyou", "kaisya", "service",
]

# Substrings that promote a discovered link into the priority tier
PRIORITY_KEYWORDS = [
    "pricing", "price", "plan", "faq", "qa", "contact", "inquiry", "access",
    "case", "works", "result", "recruit", "career", "job", "news", "topics",
    "product", "solution", "message", "philosophy", "history", "team",
]

# Page category inference from URL substrings (first match wins)
PAGE_CATEGORY_PATTERNS = [
    ("company info", ["/about", "/company", "/corporate", "/profile", "/overview", "/message"]),
    ("pricing", ["/pricing", "/price", "/plan", "/fee"]),
    ("faq", ["/faq", "/qa", "/question", "/help"]),
    ("contact", ["/contact", "/inquiry", "/access"]),
    ("services", ["/service", "/product", "/solution", "/business"]),
    ("case studies", ["/case", "/works", "/result", "/customer"]),
    ("recruiting", ["/recruit", "/career", "/job"]),
    ("news", ["/news", "/blog", "/topics", "/press"]),
]

# Sort order for page categories in crawl output
CATEGORY_ORDER = [
    "company info", "services", "pricing", "faq", "case studies",
    "contact", "recruiting", "news", "general",
]

# Tags that never carry page content
NON_CONTENT_TAGS = [
    "script", "style", "nav", "header", "footer", "aside",
    "noscript", "iframe", "form",
]

# Candidate containers for the unstructured fallback, in order
FALLBACK_CONTENT_SELECTORS = ["main", "article", ".content", "#content", "body"]

ASSET_EXTENSIONS = (
    ".jpg", ".jpeg", ".png", ".gif", ".svg", ".webp", ".ico", ".css", ".js",
    ".pdf", ".zip", ".mp4", ".mp3", ".woff", ".woff2", ".xml", ".json",
)

SKIP_HREF_PREFIXES = ("#", "javascript:", "mailto:", "tel:", "data:")

# URL parameters to strip during normalization
STRIP_PARAMS = [
    "utm_source", "utm_medium", "utm_campaign", "utm_term", "utm_content",
    "gclid", "fbclid", "msclkid", "mc_cid", "mc_eid",
]

# Legal entity markers used to rank company-profile chunks
LEGAL_ENTITY_PATTERN = (
    r"(株式会社|有限会社|合同会社|一般社団法人|"
    r"\b(?:Inc\.?|Corp\.?|Corporation|Co\.,?\s*Ltd\.?|K\.K\.|LLC|GmbH|Ltd\.?)(?=\W|$))"
)

# SPA detection
SPA_TEXT_THRESHOLD = 100
SPA_SHELL_PATTERNS = [
    r"<div[^>]+id=[\"'](?:root|app|__next|__nuxt)[\"'][^>]*>\s*</div>",
    r"<script[^>]+type=[\"']module[\"']",
]

# SPA navigation traversal
NAV_CLICK_SELECTORS = [
    "nav a", "nav button",
    "header a", "header button",
    "[role='navigation'] a", "[role='navigation'] button",
    "[class*='menu'] a", "[class*='menu'] button",
    "[class*='nav'] a", "[class*='nav'] button",
]
NAV_EXCLUDE_KEYWORDS = ["logout", "log out", "signout", "sign out", "login", "log in", "signin", "sign in"]
SNAPSHOT_DEDUPE_PREFIX = 500
MAX_NAV_CLICKS = 30

HTTP_HEADERS = {
    "User-Agent": "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
    "Accept-Language": "ja,en-US;q=0.9,en;q=0.8",
}

# Chunking
MIN_CHUNK_LENGTH = 20
MIN_DESCRIPTION_LENGTH = 20
MIN_FALLBACK_TEXT_LENGTH = 100

# Section labels
OTHER_INFO_SECTION = "Other information"
PAGE_CONTENT_SECTION = "Page content"
PAGE_SUMMARY_SECTION = "Page summary"
COMPANY_OVERVIEW_SECTION = "Company overview"
