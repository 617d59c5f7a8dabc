from jinja2 import Environment, PackageLoader

from eventsync.orchestrator import RunStats, source_order

_COUNTERS = (
    "fetched", "normalised", "errors", "inserted", "updated",
    "merged", "skipped", "notifications",
)

_env = Environment(
    loader=PackageLoader("eventsync", "templates"),
    keep_trailing_newline=True,
)


def render_summary(stats: RunStats, max_failures: int = 5) -> str:
    """Render the end-of-run summary; every counter is shown, zeros included."""
    sources = [stats.sources[k] for k in sorted(stats.sources, key=source_order)]
    template = _env.get_template("summary.txt")
    return template.render(
        stats=stats,
        sources=sources,
        totals={name: stats.total(name) for name in _COUNTERS},
        max_failures=max_failures,
    )
