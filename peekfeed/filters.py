from bs4 import BeautifulSoup
from flask import current_app


def _media_base():
    return current_app.config["MEDIA_BASE_URL"].rstrip("/")


def media_url(post):
    if not post.has_media:
        return None
    return "{}/{}/{}{}".format(_media_base(), post.board, post.tim, post.ext)


def thumbnail_url(post):
    # The API serves a jpg thumbnail for every attachment, videos included.
    if not post.has_media:
        return None
    return "{}/{}/{}s.jpg".format(_media_base(), post.board, post.tim)


def decode_html(markup):
    """Post comment markup to plain text. <br> becomes a newline."""
    if not markup:
        return ""

    soup = BeautifulSoup(markup, "html.parser")
    for br in soup.find_all("br"):
        br.replace_with("\n")
    return soup.get_text()
