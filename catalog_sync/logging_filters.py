# --- Global log sanitizer: HTML body spam and credentials ------------------------
import logging, re

_HTML_SIG_RE = re.compile(r'(?is)<!DOCTYPE html|<html[^>]*>')
_TITLE_RE    = re.compile(r'(?is)<title[^>]*>(.*?)</title>')
_TAG_RE      = re.compile(r'(?is)<[^>]+>')
_SCRIPT_RE   = re.compile(r'(?is)<(script|style)[^>]*>.*?</\1>')

# "Authorization: Basic abc", "api_key=...", '"password": "..."'
_SECRET_RE = re.compile(
    r'(?i)(authorization["\']?\s*[:=]\s*["\']?(?:basic|bearer|token)\s+'
    r'|(?:api[_-]?key|password|secret|x-publishable-api-key)["\']?\s*[:=]\s*["\']?)'
    r'([^\s"\',}]+)'
)

def _strip_tags(s: str) -> str:
    s = _SCRIPT_RE.sub('', s)
    s = _TAG_RE.sub(' ', s)
    return re.sub(r'\s+', ' ', s).strip()

def _summarize_html(s: str, limit: int = 200) -> str:
    title = None
    m = _TITLE_RE.search(s)
    if m:
        title = _strip_tags(m.group(1))
    preview = title or _strip_tags(s)[:limit]
    return f"{preview} [HTML {len(s)} chars trimmed]"

def mask_secrets(s: str) -> str:
    return _SECRET_RE.sub(lambda m: m.group(1) + "***", s)

class _SanitizeFilter(logging.Filter):
    """Replace large HTML blobs with a short summary and mask credentials."""
    def filter(self, record: logging.LogRecord) -> bool:
        try:
            msg = record.getMessage()
        except Exception:
            return True
        if not isinstance(msg, str):
            return True
        new = msg
        if len(new) > 200 and _HTML_SIG_RE.search(new):
            new = _summarize_html(new)
        new = mask_secrets(new)
        if new != msg:
            record.msg = new
            record.args = ()
        return True

def install(names=("", "uvicorn", "uvicorn.error")) -> None:
    """Attach the filter once to the given loggers (root + uvicorn family by default)."""
    for name in names:
        lg = logging.getLogger(name)
        if not any(isinstance(f, _SanitizeFilter) for f in lg.filters):
            lg.addFilter(_SanitizeFilter())
# --------------------------------------------------------------------------------
