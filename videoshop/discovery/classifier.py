"""Heuristic classifier separating real-product posts from general discussion.

Everything in this module is pure: no I/O and no clock reads. The caller
passes ``now`` so repeated classification of the same post is deterministic.
"""

import re
from datetime import datetime

from videoshop.config import settings
from videoshop.discovery.base import Classification, Post

BRANDS = (
    "apple|samsung|sony|lg|dell|hp|lenovo|asus|acer|canon|nikon|nike|adidas|"
    "amazon|google|microsoft|intel|amd|nvidia|bose|anker|logitech|dyson|garmin"
)

PRODUCT_LINES = (
    r"iphone|galaxy|pixel|macbook|surface|thinkpad|airpods|echo|kindle|fire\s?stick|"
    r"chromecast|roku|apple\s?watch|fitbit|ipad|switch|playstation|xbox|gopro"
)

CATEGORY_NOUNS = (
    r"wireless\s+earbuds|bluetooth\s+speaker|gaming\s+chair|mechanical\s+keyboard|"
    r"coffee\s+maker|air\s+fryer|robot\s+vacuum|smart\s+watch|fitness\s+tracker|dash\s+cam|"
    r"power\s+bank|phone\s+case|laptop\s+stand|monitor\s+arm|desk\s+lamp|office\s+chair|"
    r"standing\s+desk|portable\s+charger|wireless\s+charger|usb\s+hub|hdmi\s+cable|"
    r"ethernet\s+cable|surge\s+protector|extension\s+cord|wall\s+mount|phone\s+holder|"
    r"car\s+mount|bike\s+rack|water\s+bottle|travel\s+mug|screen\s+protector|tempered\s+glass|"
    r"backpack|luggage|suitcase|wallet|purse|sunglasses|watch|headphones|earphones|"
    r"speakers?|microphone|webcam|keyboard|mouse|mousepad|monitor|tv|tablet|laptop|phone|"
    r"charger|cable|adapter|hub|dock|stand|mount|holder|case|cover"
)

# Narrower noun list used for name extraction; generic words like "case" make poor names.
NAMEABLE_NOUNS = (
    r"wireless\s+earbuds|bluetooth\s+speaker|gaming\s+chair|mechanical\s+keyboard|"
    r"coffee\s+maker|air\s+fryer|robot\s+vacuum|smart\s+watch|fitness\s+tracker|dash\s+cam|"
    r"power\s+bank|phone\s+case|laptop\s+stand|monitor\s+arm|desk\s+lamp|office\s+chair|"
    r"standing\s+desk|portable\s+charger|wireless\s+charger|water\s+bottle|travel\s+mug|"
    r"backpack|headphones|speakers|keyboard|mouse|monitor|laptop|phone|charger|tablet"
)

# Brand followed by up to three model tokens on the same line
BRAND_PHRASE_RE = re.compile(rf"\b(?:{BRANDS})(?:[ \t]+[\w\-]+){{1,3}}", re.IGNORECASE)
PRODUCT_LINE_RE = re.compile(rf"\b(?:{PRODUCT_LINES})[\s\w\-]*", re.IGNORECASE)
CATEGORY_NOUN_RE = re.compile(rf"\b(?:{CATEGORY_NOUNS})\b", re.IGNORECASE)
NAMEABLE_NOUN_RE = re.compile(rf"\b(?:{NAMEABLE_NOUNS})\b", re.IGNORECASE)

# Filler that ends a model phrase ("Sony WH-1000XM5 on sale", "Anker power bank for $40")
PHRASE_STOP_WORDS = frozenset(
    ("on", "for", "with", "at", "from", "in", "is", "was", "and", "or", "the", "to", "of", "review", "sale")
)

ENDORSEMENT_RE = re.compile(
    r"\b(?:best|top|review|recommend|worth\s+it|love\s+this|amazing|incredible|perfect|"
    r"awesome|great|excellent|favorite|must\s+have|game\s+changer)\s+[\w\s]+\b",
    re.IGNORECASE,
)

PURCHASE_RE = re.compile(
    r"\b(?:bought|purchased|ordered|got|received|delivered|arrived|unboxed|reviewed|review|"
    r"using|tried|tested|owned|recommend|worth\s+buying|just\s+got|finally\s+got|picked\s+up|"
    r"found\s+this|check\s+out|look\s+at\s+this)\b",
    re.IGNORECASE,
)

PRICE_PATTERNS = (
    re.compile(r"\$\d+"),
    re.compile(r"\d+\s*dollars?", re.IGNORECASE),
    re.compile(r"\d+\s*bucks?", re.IGNORECASE),
    re.compile(
        r"\b(?:cheap|expensive|deal|sale|discount|price|cost|budget|affordable|worth\s+it)\b",
        re.IGNORECASE,
    ),
)

QUESTION_RE = re.compile(
    r"\b(?:what|why|how|when|where|should\s+i|help|advice|question|discuss|opinion|thoughts|"
    r"anyone|anybody|does\s+anyone|has\s+anyone)\b",
    re.IGNORECASE,
)

COMPLAINT_RE = re.compile(
    r"\b(?:twisted\s+ankle|go-to|meal|tips|hacks|experience|terrible|wrong|problem|issue|"
    r"broke|broken|failed|disappointed)\b",
    re.IGNORECASE,
)

MARKETPLACE_DOMAINS = (
    "amazon.com",
    "amzn.",
    "ebay.com",
    "etsy.com",
    "aliexpress.com",
    "alibaba.com",
    "walmart.com",
    "target.com",
    "bestbuy.com",
    "homedepot.com",
    "lowes.com",
    "wayfair.com",
    "overstock.com",
)

PRICE_EXTRACTORS = (
    re.compile(r"\$\d+(?:\.\d{2})?"),
    re.compile(r"\d+\s*dollars?", re.IGNORECASE),
    re.compile(r"\d+\s*bucks?", re.IGNORECASE),
    re.compile(r"under\s*\$?\d+", re.IGNORECASE),
    re.compile(r"around\s*\$?\d+", re.IGNORECASE),
)

CATEGORY_KEYWORDS: dict[str, tuple[str, ...]] = {
    "electronics": (
        "phone", "laptop", "computer", "headphones", "speaker", "camera", "tablet", "tv",
        "gaming", "iphone", "samsung", "apple", "sony", "lg", "dell", "hp", "airpods",
        "echo", "kindle", "chromecast", "roku", "watch", "fitbit", "keyboard", "monitor",
        "charger", "earbuds",
    ),
    "home & garden": (
        "kitchen", "furniture", "decor", "cleaning", "organization", "bed", "bath",
        "coffee", "maker", "fryer", "vacuum", "chair", "desk", "lamp", "stand",
    ),
    "clothing": ("shirt", "pants", "shoes", "jacket", "dress", "clothing", "fashion", "wear", "nike", "adidas"),
    "sports & outdoors": ("sports", "outdoor", "hiking", "camping", "exercise", "bike", "fitness", "tracker"),
    "automotive": ("car", "auto", "vehicle", "motorcycle", "truck", "dash", "cam"),
}

_NON_WORD_RE = re.compile(r"[^\w\s]")
_SPACES_RE = re.compile(r"\s+")
_NAME_KEY_RE = re.compile(r"[^a-z0-9\s]")


def engagement_score(upvotes: int, comment_count: int, age_hours: float) -> float:
    """Time-decayed engagement: ``(upvotes + 2*comments) * max(0.1, 1/(1+age/24))``."""
    time_decay = max(0.1, 1.0 / (1.0 + max(age_hours, 0.0) / 24.0))
    return (upvotes + 2 * comment_count) * time_decay


def clean_product_name(raw: str, max_words: int = 4) -> str:
    """Strip punctuation, keep the first few words and title-case them."""
    text = _SPACES_RE.sub(" ", _NON_WORD_RE.sub(" ", raw)).strip()
    words = text.split(" ")[:max_words] if text else []
    return " ".join(word[:1].upper() + word[1:].lower() for word in words)


def normalize_name_key(name: str) -> str:
    """Lowercased alphanumeric key used to deduplicate candidates."""
    return _SPACES_RE.sub(" ", _NAME_KEY_RE.sub("", name.lower())).strip()


def extract_product_name(title: str, body: str = "") -> str:
    """
    Pull a product name out of post text.

    Tries, in order, a brand phrase, a named product line, a category noun,
    and finally falls back to the cleaned title.
    """
    text = f"{title} {body}"
    for pattern in (BRAND_PHRASE_RE, PRODUCT_LINE_RE, NAMEABLE_NOUN_RE):
        match = pattern.search(text)
        if match:
            name = clean_product_name(trim_phrase(match.group(0)))
            if name:
                return name
    return clean_product_name(title)


def trim_phrase(phrase: str) -> str:
    """Cut a matched phrase at the first filler word after its leading token."""
    words = phrase.split()
    for index, word in enumerate(words[1:], start=1):
        if word.lower() in PHRASE_STOP_WORDS:
            return " ".join(words[:index])
    return " ".join(words)


def extract_prices(text: str) -> list[str]:
    """Price mentions in first-seen order without duplicates."""
    seen: list[str] = []
    for pattern in PRICE_EXTRACTORS:
        for match in pattern.findall(text):
            if match not in seen:
                seen.append(match)
    return seen


def categorize(product_name: str) -> str:
    name = product_name.lower()
    for category, keywords in CATEGORY_KEYWORDS.items():
        if any(keyword in name for keyword in keywords):
            return category
    return "other"


def has_marketplace_url(url: str) -> bool:
    return any(domain in (url or "") for domain in MARKETPLACE_DOMAINS)


def _matches(pattern: re.Pattern, *texts: str) -> bool:
    return any(text and pattern.search(text) for text in texts)


class HeuristicClassifier:
    """Layered regex classifier for product posts."""

    def __init__(self, min_engagement: float | None = None):
        self.min_engagement = (
            settings.min_engagement_score if min_engagement is None else min_engagement
        )

    def positive_signals(self, post: Post) -> list[str]:
        title, body = post.title, post.body
        signals = []
        if _matches(BRAND_PHRASE_RE, title, body):
            signals.append("brand")
        if _matches(PRODUCT_LINE_RE, title, body):
            signals.append("product_line")
        if _matches(CATEGORY_NOUN_RE, title, body):
            signals.append("category_noun")
        if _matches(ENDORSEMENT_RE, title, body):
            signals.append("endorsement")
        if _matches(PURCHASE_RE, title, body):
            signals.append("purchase_intent")
        if any(_matches(pattern, title, body) for pattern in PRICE_PATTERNS):
            signals.append("price")
        if has_marketplace_url(post.url):
            signals.append("marketplace_url")
        return signals

    def negative_signals(self, post: Post) -> list[str]:
        signals = []
        if _matches(QUESTION_RE, post.title, post.body):
            signals.append("discussion")
        if _matches(COMPLAINT_RE, post.title, post.body):
            signals.append("complaint")
        return signals

    def classify(self, post: Post, now: datetime) -> Classification:
        positives = self.positive_signals(post)
        negatives = self.negative_signals(post)
        score = engagement_score(post.upvotes, post.comment_count, post.age_hours(now))
        is_real = bool(positives) and not negatives and score > self.min_engagement

        name = extract_product_name(post.title, post.body)
        return Classification(
            is_real_product=is_real,
            engagement_score=score,
            product_name=name,
            category=categorize(name),
            prices=extract_prices(f"{post.title} {post.body}"),
            signals=positives,
            negative_signals=negatives,
        )
