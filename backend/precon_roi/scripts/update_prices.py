"""
Refresh the static price snapshot from Scryfall bulk data.

Downloads the bulk card file, picks one printing per (card name, set) for
every card the decklists need, prices every deck and writes
``prices.json``. The output file is rewritten after each deck, so an
interrupted run keeps the decks priced so far.

Usage:
    python -m precon_roi.scripts.update_prices [--type default_cards] [--output PATH]
    python -m precon_roi.scripts.update_prices --bulk-file cards.json
"""
import argparse
import asyncio
import gzip
import json
import os
import sys
import tempfile
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, BinaryIO, Iterator, Optional

import httpx
import ijson

from precon_roi.core.config import Settings, settings
from precon_roi.core.exceptions import (
    PriceServiceError,
    UpstreamError,
    UpstreamTimeoutError,
    UpstreamUnavailableError,
)
from precon_roi.core.logging import get_logger, setup_logging
from precon_roi.services.decks.catalog import Decklists, load_catalog
from precon_roi.services.ingestion.scryfall import ScryfallClient
from precon_roi.services.pricing.selection import (
    PriceKey,
    PriceSelection,
    Printing,
    build_price_lookup,
)
from precon_roi.services.pricing.valuation import price_deck

logger = get_logger("update_prices")

BULK_DATA_TYPES = {
    "default_cards": "Every printing in English or its only language (recommended)",
    "all_cards": "Every printing in every language (large)",
    "unique_artwork": "One card per unique artwork",
}


async def download_bulk_data(
    url: str,
    output_path: Path,
    client: Optional[httpx.AsyncClient] = None,
) -> Path:
    """Stream the bulk file to disk."""
    logger.info("Downloading bulk data", url=url)
    downloaded = 0

    owns_client = client is None
    client = client or httpx.AsyncClient(follow_redirects=True, timeout=None)
    try:
        async with client.stream("GET", url) as response:
            if response.status_code >= 400:
                raise UpstreamError(
                    f"Bulk download failed: {response.status_code}",
                    status_code=response.status_code,
                )
            with open(output_path, "wb") as f:
                async for chunk in response.aiter_bytes(chunk_size=65536):
                    f.write(chunk)
                    downloaded += len(chunk)
    except httpx.HTTPError as e:
        raise UpstreamUnavailableError(f"Bulk download failed: {e}") from e
    finally:
        if owns_client:
            await client.aclose()

    logger.info("Download complete", path=str(output_path), size_mb=round(downloaded / 1024 / 1024, 1))
    return output_path


async def download_with_timeout(
    url: str,
    output_path: Path,
    timeout_seconds: float,
    client: Optional[httpx.AsyncClient] = None,
) -> Path:
    """Download within a wall-clock limit; a timeout aborts the whole run."""
    try:
        return await asyncio.wait_for(
            download_bulk_data(url, output_path, client=client),
            timeout=timeout_seconds,
        )
    except asyncio.TimeoutError as e:
        raise UpstreamTimeoutError(
            f"Bulk download exceeded {timeout_seconds:.0f}s"
        ) from e


@contextmanager
def open_bulk_file(json_path: Path) -> Iterator[BinaryIO]:
    """
    Open a bulk file, transparently handling gzip-compressed inputs.

    Scryfall may serve gzip payloads even when the URL ends with .json.
    """
    raw = open(json_path, "rb")
    try:
        signature = raw.read(2)
        raw.seek(0)
        if signature == b"\x1f\x8b":
            with gzip.GzipFile(fileobj=raw) as gz:
                yield gz
        else:
            yield raw
    finally:
        if not raw.closed:
            raw.close()


def iter_bulk_printings(json_path: Path) -> Iterator[Printing]:
    """Stream printings out of the bulk file without loading it whole."""
    with open_bulk_file(json_path) as fh:
        for count, card in enumerate(ijson.items(fh, "item", use_float=True), start=1):
            yield Printing.from_scryfall(card)
            if count % 50000 == 0:
                logger.info("Scanning bulk data", scanned=count)


def build_sets_map(selections: dict[PriceKey, PriceSelection]) -> dict[str, list[dict[str, Any]]]:
    """Ungrouped per-set prices: set code -> [{name, collector_number, usd}]."""
    sets: dict[str, list[dict[str, Any]]] = {}
    for (name, set_code), selection in sorted(selections.items()):
        sets.setdefault(set_code, []).append({
            "name": name,
            "collector_number": selection.collector_number,
            "usd": selection.usd,
        })
    return sets


def write_json_atomic(path: Path, data: Any) -> None:
    """Write JSON to a temp file in the same directory, then replace."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2)
        os.replace(tmp_name, path)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise


def price_all_decks(
    decklists: Decklists,
    selections: dict[PriceKey, PriceSelection],
    output_path: Path,
    top_n: int,
    include_sets: bool = True,
) -> dict[str, Any]:
    """Price every deck, checkpointing the output after each one."""
    output: dict[str, Any] = {
        "updatedAt": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
        "decks": {},
    }
    if include_sets:
        output["sets"] = build_sets_map(selections)

    missing_total = 0
    set_codes = decklists.catalog.set_code_map()
    deck_ids = decklists.deck_ids()
    for index, deck_id in enumerate(deck_ids, start=1):
        set_code = set_codes.get(deck_id)
        if not set_code:
            logger.warning("Deck has no set code, skipping", deck_id=deck_id)
            continue

        entries = decklists.get_deck_cards(deck_id)
        snapshot = price_deck(entries, set_code, selections, top_n=top_n)
        missing_total += snapshot.missing_count
        output["decks"][deck_id] = snapshot.to_snapshot_dict()
        write_json_atomic(output_path, output)

        logger.info(
            "Priced deck",
            deck_id=deck_id,
            progress=f"{index}/{len(deck_ids)}",
            total_value=float(snapshot.total_value),
            missing=snapshot.missing_count,
        )

    if missing_total:
        logger.warning("Cards missing set-specific prices", missing=missing_total)
    return output


async def run(
    config: Settings,
    output_path: Path,
    data_type: str = "default_cards",
    bulk_file: Optional[Path] = None,
    keep_download: bool = False,
    include_sets: bool = True,
) -> dict[str, Any]:
    _, decklists = load_catalog(config)
    deck_ids = decklists.deck_ids()
    if not deck_ids:
        raise PriceServiceError("No decklists found")

    needed = decklists.needed_card_sets()
    logger.info("Loaded decklists", decks=len(deck_ids), unique_cards=len(needed))

    download_path: Optional[Path] = None
    if bulk_file is None:
        scryfall = ScryfallClient(config=config)
        try:
            url = await scryfall.get_bulk_data_uri(data_type)
        finally:
            await scryfall.close()
        if not url:
            raise PriceServiceError(f"Unknown bulk data type: {data_type}")

        fd, tmp_name = tempfile.mkstemp(prefix=f"scryfall_{data_type}.", suffix=".json")
        os.close(fd)
        download_path = Path(tmp_name)
        bulk_file = download_path

    try:
        if download_path is not None:
            await download_with_timeout(url, download_path, config.bulk_download_timeout_seconds)
        selections = build_price_lookup(
            iter_bulk_printings(bulk_file),
            needed=needed,
            threshold=config.serialized_collector_threshold,
        )
    finally:
        if download_path is not None and not keep_download:
            download_path.unlink(missing_ok=True)

    return price_all_decks(
        decklists,
        selections,
        output_path,
        top_n=config.top_cards_count,
        include_sets=include_sets,
    )


def main(argv: Optional[list[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Refresh the static deck price snapshot")
    parser.add_argument(
        "--type",
        choices=list(BULK_DATA_TYPES.keys()),
        default=settings.bulk_data_type,
        help="Type of bulk data to download",
    )
    parser.add_argument(
        "--output",
        type=Path,
        default=settings.snapshot_path_computed,
        help="Where to write prices.json",
    )
    parser.add_argument(
        "--bulk-file",
        type=Path,
        default=None,
        help="Use an already downloaded bulk file instead of downloading",
    )
    parser.add_argument(
        "--keep-download",
        action="store_true",
        help="Do not delete the downloaded bulk file",
    )
    parser.add_argument(
        "--no-sets",
        action="store_true",
        help="Omit the per-set price map",
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging")
    args = parser.parse_args(argv)

    setup_logging(debug=args.verbose)

    try:
        output = asyncio.run(run(
            settings,
            args.output,
            data_type=args.type,
            bulk_file=args.bulk_file,
            keep_download=args.keep_download,
            include_sets=not args.no_sets,
        ))
    except (PriceServiceError, httpx.HTTPError, OSError, ValueError) as e:
        logger.error("Failed to update prices", error=str(e), error_type=type(e).__name__)
        return 1

    total_cards = sum(deck["cardCount"] for deck in output["decks"].values())
    logger.info(
        "Wrote prices",
        path=str(args.output),
        decks=len(output["decks"]),
        total_cards=total_cards,
    )
    return 0


if __name__ == "__main__":
    sys.exit(main())
