"""facility-crawler CLI (Typer)"""

from __future__ import annotations

import asyncio
import json
from pathlib import Path
from typing import Optional

import typer

from facility_crawler import __version__
from facility_crawler.core.config import settings
from facility_crawler.core.exceptions import FacilityCrawlerException
from facility_crawler.core.logging import setup_logging
from facility_crawler.crawlers.headers import RotatingHeaderProvider
from facility_crawler.crawlers.http_client import SharedHttpClient
from facility_crawler.crawlers.registry import (
    SEARCH_ENGINES,
    build_default_adapters,
    build_fallback_strategies,
)
from facility_crawler.engine.cancellation import CancellationToken
from facility_crawler.engine.orchestrator import OrchestratorConfig
from facility_crawler.services.persistence import JsonFileSink
from facility_crawler.services.reconciliation_service import ReconciliationService

app = typer.Typer(
    name="facility-crawler",
    help="Facility Crawler - 다중 소스 시설 정보 수집/교차 검증",
    add_completion=False,
)


def _load_entities(path: Path) -> list[dict]:
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        typer.echo(f"Cannot read input file {path}: {e}", err=True)
        raise typer.Exit(code=2)
    if not isinstance(data, list):
        typer.echo("Input must be a JSON array of facilities", err=True)
        raise typer.Exit(code=2)
    return data


async def _run_pipeline(
    entities: list[dict],
    output: Path,
    engines: Optional[list[str]],
    batch_size: Optional[int],
    parallel: bool,
    with_fallback: bool,
) -> ReconciliationService:
    client = SharedHttpClient()
    try:
        cancel_token = CancellationToken()
        adapters = build_default_adapters(
            client, RotatingHeaderProvider(), engines=engines, cancel_token=cancel_token
        )
        strategies = {a.name: build_fallback_strategies(a) for a in adapters} if with_fallback else {}

        orchestrator_config = OrchestratorConfig.from_settings()
        orchestrator_config.enable_parallel = parallel
        if parallel and orchestrator_config.max_concurrent < 2:
            orchestrator_config.max_concurrent = len(adapters)

        service = ReconciliationService(
            adapters,
            strategies,
            sink=JsonFileSink(output),
            orchestrator_config=orchestrator_config,
            cancel_token=cancel_token,
        )
        if batch_size is not None and not service.set_batch_size(batch_size):
            raise typer.BadParameter(
                f"batch size must be within [{settings.batch_min_size}, {settings.batch_max_size}]",
                param_hint="--batch-size",
            )

        await service.run(entities)
        return service
    finally:
        await client.close()


@app.command()
def run(
    input_path: Path = typer.Argument(..., exists=True, dir_okay=False, help="시설 목록 JSON 파일"),
    output: Path = typer.Option(Path("facilities.out.json"), "--output", "-o", help="결과 JSON 파일"),
    engine: Optional[list[str]] = typer.Option(
        None, "--engine", "-e", help="사용할 검색 엔진 (반복 지정 가능, 기본: 전체)"
    ),
    batch_size: Optional[int] = typer.Option(None, "--batch-size", "-b", help="초기 배치 크기"),
    parallel: bool = typer.Option(
        settings.search_enable_parallel, "--parallel/--sequential", help="엔진 병렬 조회 여부"
    ),
    fallback: bool = typer.Option(True, "--fallback/--no-fallback", help="엔진별 폴백 전략 사용"),
    report: bool = typer.Option(True, "--report/--no-report", help="실행 후 성능 리포트 출력"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="DEBUG 로그 출력"),
    log_file: Optional[Path] = typer.Option(None, "--log-file", help="로그를 함께 기록할 파일"),
) -> None:
    """Collect and cross-validate facility information."""
    if verbose or log_file:
        setup_logging("DEBUG" if verbose else None, str(log_file) if log_file else None)
    entities = _load_entities(input_path)
    typer.echo(f"Processing {len(entities)} facilities -> {output}")

    try:
        service = asyncio.run(_run_pipeline(entities, output, engine, batch_size, parallel, fallback))
    except (FacilityCrawlerException, ValueError) as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(code=1)

    summary = service.last_run.summary() if service.last_run else {}
    typer.echo(
        f"Done: {summary.get('total_entities', 0)} records, "
        f"{summary.get('degraded_entities', 0)} degraded, "
        f"{summary.get('total_batches', 0)} batches"
    )
    if report:
        typer.echo(service.get_performance_report()["report"])


@app.command()
def engines() -> None:
    """List the available search engines."""
    for name, url in SEARCH_ENGINES.items():
        typer.echo(f"  {name:<12} {url}")


@app.command()
def version() -> None:
    """Show the Facility Crawler version."""
    typer.echo(f"facility-crawler {__version__}")


if __name__ == "__main__":
    app()
