"""Fixed error bodies. They must never mention the origin or carry error details."""

_PAGE_TEMPLATE = """<!DOCTYPE html>
<html>
<head>
    <title>{title}</title>
    <style>
        body {{ font-family: Arial, sans-serif; text-align: center; padding: 50px; }}
        h1 {{ color: #333; }}
    </style>
</head>
<body>
    <h1>{heading}</h1>
    <p>{message}</p>
</body>
</html>
"""

NOT_FOUND_HTML = _PAGE_TEMPLATE.format(
    title="404 Not Found",
    heading="404 - Page Not Found",
    message="The requested resource could not be found.",
)

BAD_GATEWAY_HTML = _PAGE_TEMPLATE.format(
    title="Service Temporarily Unavailable",
    heading="Service Temporarily Unavailable",
    message="Please try again later.",
)

INTERNAL_ERROR_TEXT = "Internal Server Error"
