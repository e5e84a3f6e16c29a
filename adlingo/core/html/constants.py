"""
Tag sets used by the extractor, reinsertion engine and readable-text helper.
"""

# Block-level elements. A block with no block-level descendants is a leaf
# block and is translated as one unit, inline markup included.
BLOCK_LEVEL_TAGS = frozenset({
    'address', 'article', 'aside', 'blockquote', 'caption', 'dd', 'details',
    'div', 'dl', 'dt', 'fieldset', 'figcaption', 'figure', 'footer', 'form',
    'h1', 'h2', 'h3', 'h4', 'h5', 'h6', 'header', 'hr', 'label', 'li', 'main',
    'nav', 'ol', 'p', 'pre', 'section', 'summary', 'table', 'tbody', 'td',
    'tfoot', 'th', 'thead', 'tr', 'ul', 'button', 'option',
})

# Never walked for translatable content
SKIP_TAGS = frozenset({
    'script', 'style', 'noscript', 'svg', 'path', 'head', 'template',
    'iframe', 'object', 'canvas', 'math',
})

# Whole subtrees removed from the working document and restored verbatim
STRIP_TAGS = ('style', 'script', 'svg', 'noscript')

TRANSLATABLE_ATTRIBUTES = ('alt', 'title', 'placeholder')

# Page-level metadata: key -> (xpath of the element, attribute holding the text)
# attribute None means the element text
METADATA_FIELDS = {
    'title': ('//head/title', None),
    'description': ('//meta[@name="description"]', 'content'),
    'og:title': ('//meta[@property="og:title"]', 'content'),
    'og:description': ('//meta[@property="og:description"]', 'content'),
}

STRIP_PLACEHOLDER_FORMAT = " __STRIP_{index}__ "

# Minimum stripped length for stray text and leaf blocks to be worth a unit
MIN_TEXT_LENGTH = 2
