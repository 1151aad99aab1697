# ordercache/ui/app.py

"""Terminal UI for searching the order cache."""

import logging
from collections.abc import Callable
from typing import cast

from rich.text import Text
from textual.app import App, ComposeResult
from textual.binding import Binding
from textual.containers import Container, Horizontal
from textual.widgets import (
    Button,
    DataTable,
    Footer,
    Header,
    Input,
    Static,
)

from ordercache.models.order import OrderRecord, OrderStatus
from ordercache.models.search import SearchResult
from ordercache.services.session import OrderSession, build_session

logger = logging.getLogger("ordercache.ui")

_STATUS_STYLES: dict[OrderStatus, str] = {
    OrderStatus.NOT_FULFILLED: "bold yellow",
    OrderStatus.PARTIALLY_FULFILLED: "yellow",
    OrderStatus.FULFILLED: "green",
    OrderStatus.CANCELED: "dim red",
}


class OrderSearchApp(App[object]):
    """Search-as-you-type over the order cache."""

    DEFAULT_CSS = """
    #search_bar { height: auto; }
    #search_input { width: 1fr; }
    #status { height: 1; padding: 0 1; }
    #results_table { height: 1fr; }
    """

    BINDINGS = [
        Binding("q", "quit", "Quit"),
        Binding("r", "refresh", "Refresh"),
        Binding("u", "show_unfulfilled", "Unfulfilled"),
        Binding("c", "customer_count", "Order Count"),
        Binding("i", "invalidate_cache", "Clear Cache"),
    ]

    def __init__(
        self,
        session: OrderSession | None = None,
        session_factory: Callable[[], OrderSession] = build_session,
    ) -> None:
        super().__init__()
        self._session = session
        self._session_factory = session_factory
        self.orders: list[OrderRecord] = []
        self.current_query: str = ""

    @property
    def session(self) -> OrderSession:
        """The order session, created lazily on first use."""
        if self._session is None:
            self._session = self._session_factory()
        return self._session

    def compose(self) -> ComposeResult:
        """Build the widget tree for the TUI."""
        yield Header()
        yield Container(
            Static("📦 Order Search", id="title"),
            Horizontal(
                Input(
                    placeholder="Order number, name, e-mail...",
                    id="search_input",
                ),
                Button("Search", variant="primary", id="search_btn"),
                id="search_bar",
            ),
            Static("Ready", id="status"),
            cast(
                DataTable[str | Text],
                DataTable(
                    id="results_table",
                    zebra_stripes=True,
                    cursor_type="row",
                ),
            ),
            id="main_container",
        )
        yield Footer()

    def on_mount(self) -> None:
        """Configure the results table and load recent orders."""
        table = self._table()
        table.add_columns(
            "Number", "Created", "Customer", "Email", "Status", "Total",
        )
        self.run_worker(self.action_refresh(), exclusive=True)

    async def on_unmount(self) -> None:
        """Release the session's background work and storage."""
        if self._session is not None:
            self._session.search.cancel_pending()
            await self._session.close()

    # ── Search ───────────────────────────────────────────

    def on_input_changed(self, event: Input.Changed) -> None:
        """Debounced search-as-you-type."""
        if event.input.id != "search_input":
            return
        self.current_query = event.value
        self.session.search.search_debounced(
            event.value, callback=self.show_result,
        )

    async def on_input_submitted(self, event: Input.Submitted) -> None:
        """Handle Enter key in the search input."""
        if event.input.id == "search_input":
            await self.perform_search()

    async def on_button_pressed(self, event: Button.Pressed) -> None:
        """Handle button click events."""
        if event.button.id == "search_btn":
            await self.perform_search()

    async def perform_search(self) -> None:
        """Search immediately, skipping the debounce window."""
        query = self.query_one("#search_input", Input).value
        self.current_query = query
        self.session.search.cancel_pending()
        self._set_status(f"🔍 Searching '{query.strip()}'...")
        result = await self.session.search.search(query)
        self.show_result(result)

    def show_result(self, result: SearchResult) -> None:
        """Display a search result unless a newer query replaced it."""
        if result.query != self.current_query.strip().casefold():
            logger.debug("Dropping stale result for '%s'", result.query)
            return
        self.orders = list(result.orders)
        self.populate_table()
        for error_msg in result.errors:
            self.notify(f"Error: {error_msg}", severity="error")

        source = "cache" if result.cache_hit else (
            f"{len(result.from_local)} local,"
            f" {len(result.from_remote)} remote"
        )
        if not self.orders:
            self._set_status(f"❌ No orders found ({source})")
        else:
            self._set_status(
                f"✅ {result.total_found} orders ({source})"
            )

    # ── Table ────────────────────────────────────────────

    def _table(self) -> DataTable[str | Text]:
        return cast(
            DataTable[str | Text],
            self.query_one("#results_table", DataTable),
        )

    def _set_status(self, message: str) -> None:
        self.query_one("#status", Static).update(message)

    def populate_table(self) -> None:
        """Fill the DataTable with the current orders."""
        table = self._table()
        table.clear()
        for o in self.orders:
            table.add_row(
                o.number or o.id,
                o.created_at.strftime("%Y-%m-%d %H:%M"),
                o.customer.full_name or "—",
                o.customer.email or "—",
                Text(o.status.value, style=_STATUS_STYLES[o.status]),
                f"{o.total.amount:,.2f} {o.total.currency}".strip(),
            )

    def _selected_order(self) -> OrderRecord | None:
        row = self._table().cursor_row
        if 0 <= row < len(self.orders):
            return self.orders[row]
        return None

    # ── Actions ──────────────────────────────────────────

    async def action_refresh(self) -> None:
        """Poll the newest orders into the collection."""
        self._set_status("⟳ Loading recent orders...")
        loaded = await self.session.refresh()
        self._set_status(
            f"Ready ({len(self.session.collection)} orders cached,"
            f" {loaded} refreshed)"
        )

    def action_show_unfulfilled(self) -> None:
        """Show the memoized unfulfilled view of the collection."""
        self.current_query = ""
        self.orders = list(self.session.collection.query_unfulfilled())
        self.populate_table()
        self._set_status(f"📋 {len(self.orders)} unfulfilled orders")

    async def action_customer_count(self) -> None:
        """Resolve the selected customer's total order count."""
        order = self._selected_order()
        if order is None or not order.customer.email:
            self.notify("Select an order with an e-mail", severity="warning")
            return
        count = await self.session.counts.resolve(order.customer.email)
        self.notify(f"{order.customer.email}: {count} orders")

    def action_invalidate_cache(self) -> None:
        """Purge cached search results."""
        removed = self.session.search.clear_cache()
        self.notify(f"Search cache cleared ({removed} entries)")
