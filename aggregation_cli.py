from __future__ import annotations
import argparse
import asyncio
import time

from rich import print as rprint   # coloured summary
from rich.table import Table

from aggregation.scheduler import EpochAggregationJobs
from service_config import configure_logging, load_service_config
from storage.sqlite_store import SqliteFeatureStore


def _summary_table(summary: dict) -> Table:
    table = Table(title=f"Epoch {summary['epoch_start']} – {summary['epoch_end']}")
    table.add_column("job")
    table.add_column("id", justify="right")
    table.add_column("value", justify="right")
    table.add_column("net", justify="right")
    for result in summary.get("synchrony", []):
        colour = "green" if result.net_balance >= 0 else "red"
        table.add_row("synchrony", f"cohort {result.cohort_id}", f"PLV {result.group_plv:.1f}°",
                      f"[{colour}]{result.net_balance:.1f}[/{colour}]")
    for result in summary.get("alignment", []):
        colour = "green" if result.net_balance >= 0 else "red"
        table.add_row("alignment", f"subject {result.subject_id}", f"ref #{result.reference.reading_id}",
                      f"[{colour}]{result.net_balance:.3f}[/{colour}]")
    return table


async def run_once(config_path: str | None, epoch_ms: int | None, now_ms: float | None) -> dict:
    config = load_service_config(config_path)
    configure_logging(config.logging, verbose=config.stream.verbose)
    store = SqliteFeatureStore(config.storage.db_path)
    try:
        jobs = EpochAggregationJobs(store, config.aggregation)
        return await jobs.run_epoch_aggregation(epoch_ms, now_ms=now_ms)
    finally:
        store.close()


def main() -> None:
    parser = argparse.ArgumentParser(description="Run one epoch aggregation pass (synchrony + alignment).")
    parser.add_argument("--config", metavar="FILE", help="Service config YAML")
    parser.add_argument("--epoch-ms", type=int, help="Epoch duration in ms (default from config)")
    parser.add_argument("--now-ms", type=float, help="Treat this epoch-ms instant as now")
    args = parser.parse_args()

    started = time.perf_counter()
    summary = asyncio.run(run_once(args.config, args.epoch_ms, args.now_ms))
    rprint(_summary_table(summary))
    rprint(f"[bold]done[/bold] in {(time.perf_counter() - started) * 1000:.0f} ms")


if __name__ == "__main__":  # pragma: no cover
    main()
