"""
Cleans HTML snippets captured from scanned pages before they are stored.

Snippets come from arbitrary third-party sites, so only a small allow-list of
structural tags and accessibility-relevant attributes survives; scripts,
styles and event handlers are removed.
"""
import bleach

MAX_HTML_LENGTH = 500

ALLOWED_TAGS = [
    'div', 'span', 'p', 'a', 'img', 'button', 'input', 'label',
    'h1', 'h2', 'h3', 'h4', 'h5', 'h6',
    'ul', 'ol', 'li', 'table', 'tr', 'td', 'th',
    'form', 'nav', 'header', 'footer', 'main', 'section', 'article', 'aside',
    'select', 'option', 'textarea', 'fieldset', 'legend',
]

ALLOWED_ATTRIBUTES = [
    'class', 'id', 'href', 'src', 'alt', 'title', 'type', 'name', 'value',
    'placeholder', 'role', 'for', 'tabindex',
    'aria-label', 'aria-labelledby', 'aria-describedby', 'aria-hidden',
    'aria-live', 'aria-atomic', 'aria-relevant', 'aria-busy', 'aria-controls',
    'aria-expanded', 'aria-haspopup', 'aria-invalid', 'aria-required',
    'aria-disabled', 'aria-readonly', 'aria-checked', 'aria-pressed',
    'aria-selected', 'aria-orientation', 'aria-valuemin', 'aria-valuemax',
    'aria-valuenow', 'aria-valuetext',
]

ALLOWED_PROTOCOLS = ['http', 'https', 'mailto']


def sanitize_html(html: str) -> str:
    if not html or not html.strip():
        return ""

    clean = bleach.clean(
        html,
        tags=ALLOWED_TAGS,
        attributes=ALLOWED_ATTRIBUTES,
        protocols=ALLOWED_PROTOCOLS,
        strip=True,
        strip_comments=True,
    )

    if len(clean) > MAX_HTML_LENGTH:
        return clean[:MAX_HTML_LENGTH] + "..."
    return clean
