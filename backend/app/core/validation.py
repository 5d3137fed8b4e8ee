"""Input sanitization helpers shared by request schemas."""


def sanitize_user_input(text: str, max_length: int = 10000) -> str:
    """
    Sanitize free-text user input.

    Args:
        text: Input text to sanitize
        max_length: Maximum allowed length

    Returns:
        Text without null bytes and control characters, cut to max_length
    """
    if not text:
        return ""

    if len(text) > max_length:
        text = text[:max_length]

    text = text.replace('\x00', '')
    return ''.join(char for char in text if ord(char) >= 32 or char in '\n\r\t')
