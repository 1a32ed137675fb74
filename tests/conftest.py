# tests/conftest.py

"""Shared fixtures: a SQLite file database and a fetcher that serves canned pages."""

from typing import Dict, List, Optional, Union

import pytest

from pricewatch.models.database import Database


class FakeFetcher:
    """Serves HTML by URL; an exception value is raised instead of returned."""

    def __init__(self, pages: Optional[Dict[str, Union[str, Exception]]] = None):
        self.pages = dict(pages or {})
        self.calls: List[str] = []

    def fetch(self, url, cancel_event=None):
        self.calls.append(url)
        page = self.pages[url]
        if isinstance(page, Exception):
            raise page
        return page


class RecordingNotifier:

    def __init__(self, result=True):
        self.result = result
        self.sent = []

    def send_price_drop(self, to_address, title, old_price, new_price, currency, url):
        self.sent.append((to_address, title, old_price, new_price, currency, url))
        if isinstance(self.result, Exception):
            raise self.result
        return self.result


def product_page(price: str, title: str = "Widget", currency: str = "USD") -> str:
    return f"""
    <html><head>
    <script type="application/ld+json">
    {{"@context": "https://schema.org", "@type": "Product", "name": "{title}",
      "offers": {{"@type": "Offer", "price": "{price}", "priceCurrency": "{currency}"}}}}
    </script>
    </head><body><h1>{title}</h1></body></html>
    """


EMPTY_PAGE = "<html><head><title>Nothing here</title></head><body><p>Out of stock</p></body></html>"


@pytest.fixture
def db(tmp_path):
    database = Database(f"sqlite:///{tmp_path / 'pricewatch.db'}")
    yield database
    database.close()


@pytest.fixture
def fake_fetcher():
    return FakeFetcher()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def make_page():
    return product_page


@pytest.fixture
def empty_page():
    return EMPTY_PAGE


@pytest.fixture
def failing_notifier():
    return RecordingNotifier(result=ConnectionError("smtp down"))
