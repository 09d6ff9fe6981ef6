from .ansi import (
    contains_screen_clear,
    has_real_content,
    plain_text,
    strip_ansi,
    strip_box_drawing,
)
