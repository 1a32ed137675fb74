import logging
from urllib.parse import urlparse

import pandas as pd
import plotly.express as px
import streamlit as st

from pricewatch.config import configure_logging, load_settings
from pricewatch.models.database import PersistenceError
from pricewatch.scrapers.fetcher import FetchError
from pricewatch.services.price_analysis import price_change
from pricewatch.tasks.check_prices import CheckInProgress, create_runner

OWNER = "owner@pricewatch.local"
FLASH_KEY = "flash"

st.set_page_config(
    page_title="PriceWatch",
    page_icon="📉",
    layout="wide",
    initial_sidebar_state="expanded"
)


st.markdown("""
<style>
    .main-header {
        font-size: 2.5rem;
        color: #10b981;
        margin-bottom: 1rem;
    }
    .price-current {
        font-size: 2rem;
        font-weight: bold;
    }
    .price-drop {
        color: #10b981;
        font-weight: bold;
    }
    .price-increase {
        color: #ef4444;
        font-weight: bold;
    }
</style>
""", unsafe_allow_html=True)

logger = logging.getLogger('dashboard')


@st.cache_resource
def get_runner():
    settings = load_settings()
    configure_logging(settings)
    return create_runner(settings)


def format_url(url):
    parsed = urlparse(url)
    path = parsed.path
    return f"{parsed.netloc}{path[:30] + '...' if len(path) > 30 else path}"


def history_frame(product) -> pd.DataFrame:
    if not product.history:
        return pd.DataFrame()
    # stored most-recent-first; charts read left to right
    return pd.DataFrame([
        {"timestamp": sample.observed_at, "price": float(sample.price)}
        for sample in reversed(product.history)
    ])


def add_new_product(url):
    if not url.startswith(("http://", "https://")):
        return False, "Invalid URL. Make sure it starts with http:// or https://"

    runner = get_runner()
    result = runner.checker.preview(url)
    if not result.success:
        return False, f"Could not fetch product page: {result.error}"

    owner_id = runner.db.get_or_create_user(OWNER)
    product = runner.db.add_product(url, result.title, result.price, result.currency, owner_id=owner_id)
    if result.price > 0:
        return True, f"Added {product.title} at {product.currency}{product.current_price}"
    return True, f"Added {product.title}, but no price was found on the page yet"


def check_now(product_id):
    try:
        outcome = get_runner().check_product(product_id)
    except CheckInProgress:
        return False, "A check for this product is already running"
    except (FetchError, PersistenceError) as e:
        return False, f"Check failed: {e}"

    if outcome.superseded:
        return False, "Another check stored a new price first"
    if outcome.updated:
        return True, f"Current price: {outcome.new_currency}{outcome.new_price}"
    return False, "No price found on the page; the stored price was kept"


def flash(ok, message):
    # st.rerun() discards anything rendered in the current run
    st.session_state[FLASH_KEY] = (ok, message)


def render_flash():
    if FLASH_KEY in st.session_state:
        ok, message = st.session_state.pop(FLASH_KEY)
        (st.success if ok else st.warning)(message)


def render_settings():
    runner = get_runner()
    owner_id = runner.db.get_or_create_user(OWNER)

    st.sidebar.markdown("## Notifications")
    with st.sidebar.form("settings_form"):
        email = st.text_input(
            "Alert email",
            value=runner.db.get_notification_email(owner_id) or "",
            placeholder="your@email.com"
        )
        if st.form_submit_button("Save"):
            if email and "@" not in email:
                st.sidebar.error("Please enter a valid email address")
            else:
                runner.db.set_notification_email(owner_id, email)
                st.sidebar.success("Saved")


def render_product(product):
    change = price_change(product)

    col1, col2 = st.columns([2, 1])
    with col1:
        st.markdown(f"### {product.title}")
        st.markdown(f"<a href='{product.url}' target='_blank'>{format_url(product.url)}</a>", unsafe_allow_html=True)

        if product.current_price > 0:
            st.markdown(
                f"<div class='price-current'>{product.currency}{product.current_price:.2f}</div>",
                unsafe_allow_html=True
            )
        else:
            st.markdown("<div style='color: #ef4444;'>No price found yet</div>", unsafe_allow_html=True)

        if change:
            css_class = "price-increase" if change.diff > 0 else "price-drop"
            arrow = "↑" if change.diff > 0 else "↓"
            st.markdown(f"<span class='{css_class}'>{arrow} {abs(change.percent):.1f}%</span>", unsafe_allow_html=True)

    with col2:
        if st.button("Check now", key=f"check_{product.id}"):
            flash(*check_now(product.id))
            st.rerun()
        if st.button("Remove", key=f"remove_{product.id}", type="secondary"):
            get_runner().db.delete_product(product.id)
            flash(True, f"Stopped tracking {product.title}")
            st.rerun()

    df = history_frame(product)
    if len(df) > 1:
        fig = px.line(df, x="timestamp", y="price", labels={"timestamp": "Date", "price": f"Price ({product.currency})"})
        fig.update_layout(height=250, hovermode="x unified", margin=dict(l=0, r=0, t=10, b=0))
        st.plotly_chart(fig, use_container_width=True)


def main():
    st.markdown('<h1 class="main-header">PriceWatch</h1>', unsafe_allow_html=True)
    render_flash()

    st.sidebar.markdown("## Add New Product")
    with st.sidebar.form("add_product_form"):
        new_url = st.text_input("Product URL")
        if st.form_submit_button("Track") and new_url:
            with st.spinner("Fetching product page..."):
                success, message = add_new_product(new_url)
            (st.sidebar.success if success else st.sidebar.error)(message)

    render_settings()

    runner = get_runner()
    owner_id = runner.db.get_or_create_user(OWNER)
    products = runner.db.list_all_products(owner_id=owner_id)

    if not products:
        st.info("No products are being tracked yet. Add a product URL in the sidebar to get started.")
        return

    st.markdown(f"## Tracking {len(products)} Products")
    for product in products:
        with st.container(border=True):
            render_product(product)


if __name__ == "__main__":
    main()
