from __future__ import annotations

import asyncio
import base64
import logging
import os
import shlex
from collections import deque
from dataclasses import asdict, dataclass
from typing import Any, Iterable, Optional

import httpx
from reportlab.lib.pagesizes import A4
from reportlab.pdfgen import canvas

from kiosk.core.config import (
    LOCAL_SPOOLER_COMMAND,
    LOCAL_SPOOLER_ENABLED,
    LOCAL_SPOOLER_MEMORY,
    LOCAL_SPOOLER_SETTLE_SECONDS,
    PRINT_RELAY_BASE_URL,
    PRINT_RELAY_PROVIDER,
    PRINT_RELAY_SOURCE,
    PRINT_RELAY_TIMEOUT_SECONDS,
    TICKETS_DIR,
)
from kiosk.core.errors import PrintChannelError
from kiosk.services.event_bus import PRINT_DISPATCH_COMPLETED, PRINT_LOCAL_FAILED, EventBus, event_bus
from kiosk.services.receipt import structured_text_rows
from kiosk.services.secrets import SecretRetrievalError, SecretStore

logger = logging.getLogger(__name__)

RELAY = "relay"
LOCAL = "local"
LOCAL_PRINTER_ID = "local"

# Dispositivos onde o diálogo de impressão do sistema não existe
_NO_LOCAL_PRINT_DEVICES = {"mobile", "tablet"}


@dataclass(frozen=True)
class PrintJobResult:
    printer_id: str
    channel: str
    ok: bool
    job_id: Optional[str] = None
    kind: Optional[str] = None
    reason: Optional[str] = None
    status_code: Optional[int] = None

    @classmethod
    def failure(cls, channel: str, error: PrintChannelError, printer_id: str) -> "PrintJobResult":
        return cls(
            printer_id=printer_id,
            channel=channel,
            ok=False,
            kind=error.kind,
            reason=str(error),
            status_code=error.status_code,
        )


@dataclass(frozen=True)
class PrintDispatchReport:
    restaurant_id: int
    order_number: int
    results: tuple[PrintJobResult, ...] = ()
    local: Optional[PrintJobResult] = None

    @property
    def success_count(self) -> int:
        return sum(1 for r in self.results if r.ok)

    @property
    def failure_count(self) -> int:
        return sum(1 for r in self.results if not r.ok)

    def to_payload(self) -> dict[str, Any]:
        return {
            "restaurant_id": self.restaurant_id,
            "order_number": self.order_number,
            "success_count": self.success_count,
            "failure_count": self.failure_count,
            "results": [asdict(r) for r in self.results],
            "local": asdict(self.local) if self.local else None,
        }


# =========================
# Relay remoto (PrintNode)
# =========================

class PrintRelayClient:
    def __init__(
        self,
        base_url: str = PRINT_RELAY_BASE_URL,
        *,
        timeout: float = PRINT_RELAY_TIMEOUT_SECONDS,
        source: str = PRINT_RELAY_SOURCE,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._source = source
        self._transport = transport

    def build_payload(self, printer_id: str, title: str, content_b64: str) -> dict[str, Any]:
        printer: int | str = int(printer_id) if str(printer_id).isdigit() else printer_id
        return {
            "printer": printer,
            "title": title,
            "contentType": "raw_base64",
            "content": content_b64,
            "source": self._source,
        }

    async def _submit(
        self,
        client: httpx.AsyncClient,
        api_key: str,
        printer_id: str,
        title: str,
        content_b64: str,
    ) -> PrintJobResult:
        try:
            response = await client.post(
                f"{self._base_url}/printjobs",
                json=self.build_payload(printer_id, title, content_b64),
                auth=(api_key, ""),
            )
        except httpx.HTTPError as exc:
            raise PrintChannelError(
                PrintChannelError.TRANSPORT,
                f"Print relay unreachable: {exc}",
                printer_id=printer_id,
            ) from exc

        if not response.is_success:
            raise PrintChannelError(
                PrintChannelError.REJECTED,
                f"Print relay rejected job ({response.status_code}): {response.text}",
                printer_id=printer_id,
                status_code=response.status_code,
            )

        try:
            job_id = str(response.json())
        except ValueError:
            job_id = None
        return PrintJobResult(printer_id=printer_id, channel=RELAY, ok=True, job_id=job_id)

    async def submit_all(
        self,
        api_key: str,
        printer_ids: Iterable[str],
        *,
        title: str,
        stream: str,
    ) -> list[PrintJobResult]:
        content_b64 = base64.b64encode(stream.encode("utf-8")).decode("ascii")
        printer_ids = [str(p) for p in printer_ids]

        async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
            outcomes = await asyncio.gather(
                *(self._submit(client, api_key, printer_id, title, content_b64) for printer_id in printer_ids),
                return_exceptions=True,
            )

        results = []
        for printer_id, outcome in zip(printer_ids, outcomes):
            if isinstance(outcome, PrintJobResult):
                results.append(outcome)
            elif isinstance(outcome, PrintChannelError):
                results.append(PrintJobResult.failure(RELAY, outcome, printer_id))
            elif isinstance(outcome, Exception):
                logger.error("Unexpected print relay failure", exc_info=outcome, extra={"printer_id": printer_id})
                error = PrintChannelError(PrintChannelError.TRANSPORT, str(outcome), printer_id=printer_id)
                results.append(PrintJobResult.failure(RELAY, error, printer_id))
            else:
                raise outcome
        return results


# =========================
# Spooler local (PDF)
# =========================

class LocalSpooler:
    def __init__(
        self,
        *,
        enabled: bool = LOCAL_SPOOLER_ENABLED,
        command: str = LOCAL_SPOOLER_COMMAND,
        settle_seconds: float = LOCAL_SPOOLER_SETTLE_SECONDS,
        tickets_dir: str = TICKETS_DIR,
    ) -> None:
        self.enabled = enabled
        self.command = command
        self.settle_seconds = settle_seconds
        self.tickets_dir = tickets_dir

    def applies_to(self, device_class: Optional[str]) -> bool:
        return self.enabled and (device_class or "").strip().lower() not in _NO_LOCAL_PRINT_DEVICES

    def write_ticket_pdf(self, restaurant_id: int, order_number: int, tree: dict[str, Any]) -> str:
        """Gera o PDF do recibo a partir da árvore estruturada e retorna o caminho."""
        base_dir = os.path.join(self.tickets_dir, f"restaurant_{restaurant_id}")
        os.makedirs(base_dir, exist_ok=True)
        file_path = os.path.join(base_dir, f"order_{order_number}_restaurant_{restaurant_id}.pdf")

        c = canvas.Canvas(file_path, pagesize=A4)
        _, height = A4
        y = height - 40

        def write_line(text: str = "", gap: int = 14, bold: bool = False, font_size: int = 9):
            nonlocal y
            if y < 40:
                c.showPage()
                y = height - 40
            c.setFont("Courier-Bold" if bold else "Courier", font_size)
            c.drawString(40, y, text)
            y -= gap

        rows = structured_text_rows(tree)
        total_row = tree["totals"]["total_row"]
        for index, row in enumerate(rows):
            write_line(row, bold=index == 0 or row == total_row, font_size=12 if index == 0 else 9)

        c.showPage()
        c.save()
        return file_path

    async def spool(self, restaurant_id: int, order_number: int, tree: dict[str, Any]) -> PrintJobResult:
        try:
            path = await asyncio.to_thread(self.write_ticket_pdf, restaurant_id, order_number, tree)
        except OSError as exc:
            raise PrintChannelError(PrintChannelError.LOCAL, f"Could not write ticket: {exc}") from exc

        if self.command:
            try:
                process = await asyncio.create_subprocess_exec(
                    *shlex.split(self.command),
                    path,
                    stdout=asyncio.subprocess.DEVNULL,
                    stderr=asyncio.subprocess.PIPE,
                )
                _, stderr = await process.communicate()
            except OSError as exc:
                raise PrintChannelError(PrintChannelError.LOCAL, f"Spool command failed: {exc}") from exc
            if process.returncode != 0:
                raise PrintChannelError(
                    PrintChannelError.LOCAL,
                    f"Spool command exited {process.returncode}: {(stderr or b'').decode(errors='replace').strip()}",
                )

        if self.settle_seconds > 0:
            await asyncio.sleep(self.settle_seconds)
        return PrintJobResult(printer_id=LOCAL_PRINTER_ID, channel=LOCAL, ok=True, job_id=path)


# =========================
# Despacho por pedido
# =========================

class PrintDispatcher:
    """
    Entrega o recibo de um pedido em todos os canais configurados.

    Cada impressora é independente: falha em uma não cancela as outras e não
    há retry automático. O resultado consolidado vai para o event bus.
    """

    def __init__(
        self,
        secret_store: SecretStore,
        *,
        relay: Optional[PrintRelayClient] = None,
        spooler: Optional[LocalSpooler] = None,
        bus: EventBus = event_bus,
        provider: str = PRINT_RELAY_PROVIDER,
        spool_memory: int = LOCAL_SPOOLER_MEMORY,
    ) -> None:
        self._secrets = secret_store
        self._relay = relay or PrintRelayClient()
        self._spooler = spooler or LocalSpooler()
        self._bus = bus
        self._provider = provider
        # Pedidos já impressos localmente; os mais antigos saem da memória
        self._spooled: set[tuple[int, int]] = set()
        self._spool_order: deque[tuple[int, int]] = deque()
        self._spool_memory = max(1, spool_memory)

    async def _relay_results(
        self, restaurant_id: int, order_number: int, printer_ids: list[str], stream: str
    ) -> list[PrintJobResult]:
        if not printer_ids:
            return []
        try:
            api_key = await self._secrets.retrieve_api_key(restaurant_id, self._provider)
        except SecretRetrievalError as exc:
            logger.error(
                "Print relay credential unavailable kind=%s",
                exc.kind,
                extra={"order_number": order_number},
            )
            error = PrintChannelError(PrintChannelError.CREDENTIAL, str(exc))
            return [PrintJobResult.failure(RELAY, error, printer_id) for printer_id in printer_ids]
        except Exception as exc:
            logger.exception("Print relay credential lookup raised", extra={"order_number": order_number})
            error = PrintChannelError(PrintChannelError.CREDENTIAL, f"Credential lookup failed: {exc}")
            return [PrintJobResult.failure(RELAY, error, printer_id) for printer_id in printer_ids]

        results = await self._relay.submit_all(
            api_key,
            printer_ids,
            title=f"Order #{order_number}",
            stream=stream,
        )
        for result in results:
            if result.ok:
                logger.info(
                    "Print job submitted job_id=%s",
                    result.job_id,
                    extra={"printer_id": result.printer_id, "order_number": order_number},
                )
            else:
                logger.warning(
                    "Print job failed kind=%s reason=%s",
                    result.kind,
                    result.reason,
                    extra={"printer_id": result.printer_id, "order_number": order_number},
                )
        return results

    def _remember_spooled(self, key: tuple[int, int]) -> None:
        self._spooled.add(key)
        self._spool_order.append(key)
        while len(self._spool_order) > self._spool_memory:
            self._spooled.discard(self._spool_order.popleft())

    async def _local_result(
        self,
        restaurant_id: int,
        order_number: int,
        structured: Optional[dict[str, Any]],
        device_class: Optional[str],
    ) -> Optional[PrintJobResult]:
        if structured is None or not self._spooler.applies_to(device_class):
            return None
        key = (restaurant_id, order_number)
        if key in self._spooled:
            logger.info("Local print already done", extra={"order_number": order_number})
            return None
        self._remember_spooled(key)
        try:
            return await self._spooler.spool(restaurant_id, order_number, structured)
        except PrintChannelError as exc:
            logger.warning("Local print failed: %s", exc, extra={"order_number": order_number})
            return PrintJobResult.failure(LOCAL, exc, LOCAL_PRINTER_ID)

    async def dispatch(
        self,
        *,
        restaurant_id: int,
        order_number: int,
        stream: str,
        printer_ids: Iterable[str] = (),
        structured: Optional[dict[str, Any]] = None,
        device_class: Optional[str] = None,
    ) -> PrintDispatchReport:
        printer_ids = [str(p) for p in (printer_ids or []) if str(p).strip()]
        relay_results, local = await asyncio.gather(
            self._relay_results(restaurant_id, order_number, printer_ids, stream),
            self._local_result(restaurant_id, order_number, structured, device_class),
        )
        report = PrintDispatchReport(
            restaurant_id=restaurant_id,
            order_number=order_number,
            results=tuple(relay_results),
            local=local,
        )
        logger.info(
            "Print dispatch completed success=%s failure=%s",
            report.success_count,
            report.failure_count,
            extra={"order_number": order_number},
        )
        if local is not None and not local.ok:
            self._bus.emit(
                PRINT_LOCAL_FAILED,
                {"restaurant_id": restaurant_id, "order_number": order_number, "reason": local.reason},
            )
        self._bus.emit(PRINT_DISPATCH_COMPLETED, report.to_payload())
        return report
