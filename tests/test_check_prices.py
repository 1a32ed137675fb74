"""Tests for manual checks and batch sweeps."""

from decimal import Decimal

import pytest

from pricewatch.models.database import Database, PersistenceError
from pricewatch.scrapers.fetcher import FetchHTTPStatusError, FetchTimeout
from pricewatch.services.price_check import PriceCheckService
from pricewatch.tasks.check_prices import CheckInProgress, InFlightRegistry, PriceCheckRunner

URL_A = "https://shop.example.com/a"
URL_B = "https://shop.example.com/b"
URL_C = "https://shop.example.com/c"


def _runner(db, fetcher, notifier=None, max_workers=1):
    return PriceCheckRunner(db, PriceCheckService(fetcher, default_currency="$"), notifier, max_workers=max_workers)


def _track(db, url, price, email="alerts@example.com"):
    owner_id = db.get_or_create_user("owner@example.com")
    db.set_notification_email(owner_id, email)
    return db.add_product(url, f"Product {url[-1].upper()}", Decimal(price), "$", owner_id=owner_id)


class TestInFlightRegistry:

    def test_acquire_is_exclusive(self) -> None:
        registry = InFlightRegistry()

        assert registry.try_acquire(1) is True
        assert registry.try_acquire(1) is False
        assert registry.try_acquire(2) is True
        registry.release(1)
        assert registry.try_acquire(1) is True

    def test_hold_releases_on_error(self) -> None:
        registry = InFlightRegistry()

        with pytest.raises(ValueError):
            with registry.hold(7):
                raise ValueError("fail")

        assert registry.is_active(7) is False


class TestSweep:

    def test_timeout_is_isolated_to_one_product(self, db, fake_fetcher, notifier, make_page) -> None:
        a = _track(db, URL_A, "100")
        b = _track(db, URL_B, "100")
        c = _track(db, URL_C, "100")
        fake_fetcher.pages.update({
            URL_A: make_page("95"),
            URL_B: FetchTimeout("deadline exceeded"),
            URL_C: make_page("120"),
        })

        summary = _runner(db, fake_fetcher, notifier, max_workers=3).check_all_products()

        assert summary.total == 3
        assert summary.updated == 2
        assert summary.failed == 1
        assert db.load_product(a.id).current_price == Decimal("95")
        assert db.load_product(b.id).current_price == Decimal("100")
        assert len(db.load_product(b.id).history) == 1
        assert db.load_product(c.id).current_price == Decimal("120")

    def test_one_notification_per_drop(self, db, fake_fetcher, notifier, make_page) -> None:
        a = _track(db, URL_A, "100")
        _track(db, URL_B, "100")
        fake_fetcher.pages.update({URL_A: make_page("80", title="Product A"), URL_B: make_page("130")})

        summary = _runner(db, fake_fetcher, notifier).check_all_products()

        assert summary.notified == 1
        assert notifier.sent == [
            ("alerts@example.com", "Product A", Decimal("100"), Decimal("80"), "$", URL_A)
        ]
        assert db.load_product(a.id).current_price == Decimal("80")

    def test_repeated_sweep_does_not_renotify_same_price(self, db, fake_fetcher, notifier, make_page) -> None:
        _track(db, URL_A, "100")
        fake_fetcher.pages[URL_A] = make_page("80")
        runner = _runner(db, fake_fetcher, notifier)

        runner.check_all_products()
        runner.check_all_products()

        assert len(notifier.sent) == 1

    def test_no_notification_without_address(self, db, fake_fetcher, notifier, make_page) -> None:
        _track(db, URL_A, "100", email=None)
        fake_fetcher.pages[URL_A] = make_page("50")

        summary = _runner(db, fake_fetcher, notifier).check_all_products()

        assert summary.updated == 1
        assert summary.notified == 0
        assert notifier.sent == []

    def test_notifier_failure_keeps_price_update(self, db, fake_fetcher, failing_notifier, make_page) -> None:
        a = _track(db, URL_A, "100")
        fake_fetcher.pages[URL_A] = make_page("60")

        summary = _runner(db, fake_fetcher, failing_notifier).check_all_products()

        assert summary.updated == 1
        assert summary.notified == 0
        assert summary.failed == 0
        assert len(failing_notifier.sent) == 1
        assert db.load_product(a.id).current_price == Decimal("60")

    def test_zero_price_does_not_overwrite(self, db, fake_fetcher, notifier, empty_page) -> None:
        a = _track(db, URL_A, "100")
        fake_fetcher.pages[URL_A] = empty_page

        summary = _runner(db, fake_fetcher, notifier).check_all_products()

        stored = db.load_product(a.id)
        assert summary.updated == 0
        assert summary.skipped == 1
        assert stored.current_price == Decimal("100")
        assert [s.price for s in stored.history] == [Decimal("100")]
        assert notifier.sent == []

    def test_persistence_failure_is_isolated(self, tmp_path, fake_fetcher, notifier, make_page) -> None:
        class FlakyDatabase(Database):
            def save_updated_price(self, product_id, *args, **kwargs):
                if product_id == self.broken_id:
                    raise PersistenceError("disk full")
                return super().save_updated_price(product_id, *args, **kwargs)

        db = FlakyDatabase(f"sqlite:///{tmp_path / 'flaky.db'}")
        try:
            a = _track(db, URL_A, "100")
            b = _track(db, URL_B, "100")
            db.broken_id = a.id
            fake_fetcher.pages.update({URL_A: make_page("10"), URL_B: make_page("90")})

            summary = _runner(db, fake_fetcher, notifier).check_all_products()

            assert summary.updated == 1
            assert summary.failed == 1
            assert db.load_product(a.id).current_price == Decimal("100")
            assert db.load_product(b.id).current_price == Decimal("90")
            assert [sent[5] for sent in notifier.sent] == [URL_B]
        finally:
            db.close()

    def test_product_in_flight_is_skipped(self, db, fake_fetcher, notifier, make_page) -> None:
        a = _track(db, URL_A, "100")
        fake_fetcher.pages[URL_A] = make_page("50")
        runner = _runner(db, fake_fetcher, notifier)
        runner.in_flight.try_acquire(a.id)

        summary = runner.check_all_products()

        assert summary.skipped == 1
        assert fake_fetcher.calls == []
        assert notifier.sent == []

    def test_empty_sweep(self, db, fake_fetcher) -> None:
        summary = _runner(db, fake_fetcher).check_all_products()

        assert summary.total == 0
        assert summary.updated == 0


class TestManualCheck:

    def test_check_product_persists_and_notifies(self, db, fake_fetcher, notifier, make_page) -> None:
        a = _track(db, URL_A, "100")
        fake_fetcher.pages[URL_A] = make_page("75")

        outcome = _runner(db, fake_fetcher, notifier).check_product(a.id)

        stored = db.load_product(a.id)
        assert outcome.dropped_from == Decimal("100")
        assert stored.current_price == Decimal("75")
        assert [s.price for s in stored.history] == [Decimal("75"), Decimal("100")]
        assert len(notifier.sent) == 1

    def test_fetch_error_propagates_and_keeps_state(self, db, fake_fetcher, notifier) -> None:
        a = _track(db, URL_A, "100")
        fake_fetcher.pages[URL_A] = FetchHTTPStatusError(404, URL_A)

        with pytest.raises(FetchHTTPStatusError):
            _runner(db, fake_fetcher, notifier).check_product(a.id)

        assert db.load_product(a.id).current_price == Decimal("100")

    def test_concurrent_check_is_rejected(self, db, fake_fetcher, make_page) -> None:
        a = _track(db, URL_A, "100")
        fake_fetcher.pages[URL_A] = make_page("90")
        runner = _runner(db, fake_fetcher)

        with runner.in_flight.hold(a.id):
            with pytest.raises(CheckInProgress):
                runner.check_product(a.id)

        assert fake_fetcher.calls == []

    def test_manual_check_racing_sweep_fires_one_notification(self, db, notifier, make_page) -> None:
        import threading

        entered = threading.Event()
        release = threading.Event()

        class BlockingFetcher:
            def fetch(self, url, cancel_event=None):
                entered.set()
                release.wait(timeout=5)
                return make_page("70")

        a = _track(db, URL_A, "100")
        runner = _runner(db, BlockingFetcher(), notifier)
        sweep = threading.Thread(target=runner.check_all_products)
        sweep.start()
        try:
            assert entered.wait(timeout=5)
            with pytest.raises(CheckInProgress):
                runner.check_product(a.id)
        finally:
            release.set()
            sweep.join(timeout=5)

        assert len(notifier.sent) == 1
        assert len(db.load_product(a.id).history) == 2


class TestSeparateProcesses:
    """Runners that share only the database file, as the scheduler and the dashboard do."""

    def test_racing_runners_record_one_drop(self, db, notifier, make_page) -> None:
        import threading

        both_fetched = threading.Barrier(2)

        class SynchronizedFetcher:
            def fetch(self, url, cancel_event=None):
                both_fetched.wait(timeout=5)
                return make_page("90", title="Widget")

        a = _track(db, URL_A, "100")
        other_db = Database(db.database_url)
        manual = _runner(other_db, SynchronizedFetcher(), notifier)
        sweep = _runner(db, SynchronizedFetcher(), notifier)
        outcomes = []
        worker = threading.Thread(target=lambda: outcomes.append(manual.check_product(a.id)))
        worker.start()
        try:
            summary = sweep.check_all_products()
        finally:
            worker.join(timeout=10)
            other_db.close()

        stored = db.load_product(a.id)
        assert len(notifier.sent) == 1
        assert stored.current_price == Decimal("90")
        assert [s.price for s in stored.history] == [Decimal("90"), Decimal("100")]
        assert summary.updated + int(outcomes[0].updated) == 1
        assert outcomes[0].superseded is (summary.updated == 1)

    def test_stale_manual_check_is_reported(self, db, fake_fetcher, notifier, make_page) -> None:
        a = _track(db, URL_A, "100")
        fake_fetcher.pages[URL_A] = make_page("90")
        runner = _runner(db, fake_fetcher, notifier)
        original_load = db.load_product

        def load_then_overwrite(product_id):
            product = original_load(product_id)
            # a write from elsewhere lands between the read and the save
            db.save_updated_price(product_id, Decimal("95"), "$")
            return product

        db.load_product = load_then_overwrite
        outcome = runner.check_product(a.id)
        del db.load_product

        assert outcome.superseded is True
        assert outcome.updated is False
        assert notifier.sent == []
        assert db.load_product(a.id).current_price == Decimal("95")
