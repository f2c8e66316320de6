# /chunkscope/app.py
"""
Command-line front end for the retrieval engine.
Loads one text document, indexes it, then answers questions in a prompt loop
by printing the ranked chunks the engine would hand to an answer generator.
"""
import argparse
import sys
from pathlib import Path

# Rich UI Components
from rich.panel import Panel
from rich.prompt import Prompt
from rich.table import Table

# Local module imports
from .config import (
    CHROMA_COLLECTION,
    CHROMA_HOST,
    CHROMA_PORT,
    CHUNK_CHARS_PER_TOKEN,
    CHUNK_MIN_SIZE,
    CHUNK_OVERLAP_PERCENT,
    CHUNK_TARGET_TOKENS,
    DB_PATH,
    METRICS_DIR,
    RetrievalSettings,
    console,
)
from .chunker import ChunkerConfig
from .embeddings import get_embeddings
from .errors import ChunkscopeError, EmptyResultError
from .metrics import RetrievalMetrics
from .observability import get_logger
from .orchestrator import RetrievalOrchestrator
from .vector_store import ChromaVectorStore, build_chroma_client

# LangChain document loading
from langchain_community.document_loaders import TextLoader

logger = get_logger(__name__)

PREVIEW_CHARS = 160
EXIT_COMMANDS = {"exit", "quit", "/exit", "/quit"}


# --- UI & Formatting Functions ---

def display_welcome_banner(settings: RetrievalSettings):
    """Displays the application's welcome banner."""
    console.print(Panel(
        "[bold magenta]chunkscope - Document Retrieval CLI[/bold magenta]",
        subtitle="[cyan]Adaptive, cached, hybrid retrieval[/cyan]",
        expand=False
    ))
    layers = {
        "query cache": settings.enable_query_cache,
        "chunk cache": settings.enable_chunk_cache,
        "adaptive top-k": settings.enable_adaptive_retrieval,
        "file routing": settings.enable_file_routing,
    }
    enabled = ", ".join(name for name, on in layers.items() if on) or "none"
    console.print(f"[green]Optimization layers: {enabled}[/green]")


def _preview(text: str, limit: int = PREVIEW_CHARS) -> str:
    flat = " ".join(str(text or "").split())
    return flat if len(flat) <= limit else flat[: limit - 3] + "..."


def format_outcome(outcome) -> Table:
    """Renders a RetrievalOutcome as a ranked table."""
    table = Table(title=f"{len(outcome.chunks)} chunk(s)", show_lines=False)
    table.add_column("#", justify="right", style="dim")
    table.add_column("Chunk", style="cyan", no_wrap=True)
    table.add_column("Type", style="magenta")
    table.add_column("Distance", justify="right")
    table.add_column("Source", style="yellow")
    table.add_column("Preview")
    for rank, chunk in enumerate(outcome.chunks, start=1):
        table.add_row(
            str(rank),
            chunk.chunk_id,
            str(chunk.metadata.get("chunk_type", "")),
            f"{chunk.distance:.4f}",
            chunk.source,
            _preview(chunk.text),
        )
    return table


def print_stats(orchestrator: RetrievalOrchestrator):
    stats = orchestrator.stats()
    table = Table(title="Runtime statistics")
    table.add_column("Component", style="cyan")
    table.add_column("Values")
    for component in ("query_cache", "chunk_cache", "file_router"):
        values = stats.get(component)
        rendered = "disabled" if values is None else ", ".join(f"{k}={v}" for k, v in values.items())
        table.add_row(component, rendered)
    summary = stats["metrics"]
    table.add_row("latency", ", ".join(f"{k}={v}" for k, v in summary["latency"].items()))
    table.add_row("queries", str(summary["throughput"]["total_queries"]))
    table.add_row("adaptive", f"avg_top_k={summary['adaptive']['avg_top_k']}")
    table.add_row("strategies", ", ".join(f"{k}={v}" for k, v in summary["strategies"].items()) or "-")
    table.add_row("memory", f"rss_mb={summary['memory']['rss_mb']}")
    table.add_row("errors", str(summary["errors"]["count"]))
    console.print(table)


# --- Document & Q&A Flow ---

def load_document_text(path: Path) -> str:
    """Reads a plain-text document through LangChain's TextLoader."""
    docs = TextLoader(str(path), autodetect_encoding=True).load()
    return "\n\n".join(doc.page_content for doc in docs)


def index_document(orchestrator: RetrievalOrchestrator, path: Path, file_id: str) -> bool:
    chunker_config = ChunkerConfig(
        target_tokens=CHUNK_TARGET_TOKENS,
        overlap_percent=CHUNK_OVERLAP_PERCENT,
        chars_per_token=CHUNK_CHARS_PER_TOKEN,
        min_chunk_size=CHUNK_MIN_SIZE,
    )
    processor = orchestrator.document_processor(chunker_config)
    try:
        with console.status(f"[bold cyan]Indexing {path.name}...[/bold cyan]", spinner="dots"):
            text = load_document_text(path)
            report = processor.process(file_id, text)
    except (ChunkscopeError, ValueError, RuntimeError) as exc:
        logger.error("document_index_failed", path=str(path), error=str(exc))
        console.print(f"[bold red]Failed to index '{path}': {exc}[/bold red]")
        return False
    console.print(
        f"[green]Indexed {report.embedded}/{report.chunk_count} chunks[/green] "
        f"[dim](skipped={len(report.skipped)}, {report.elapsed_ms:.1f} ms)[/dim]"
    )
    return True


def handle_question(orchestrator: RetrievalOrchestrator, file_id: str, question: str):
    try:
        outcome = orchestrator.retrieve(file_id, question)
    except EmptyResultError:
        console.print(Panel("[yellow]No relevant context found.[/yellow]", title="Warning"))
        return
    except ChunkscopeError as exc:
        console.print(Panel(f"[red]{exc}[/red]", title="Error", border_style="red"))
        return

    console.print(
        f"[dim]intent={outcome.intent.intent.value} strategy={outcome.strategy} "
        f"terms={','.join(outcome.key_terms) or '-'} cache_hit={outcome.cache_hit} "
        f"reused={outcome.context_reused} latency={outcome.latency_ms:.1f} ms[/dim]"
    )
    console.print(format_outcome(outcome))


def run_session(orchestrator: RetrievalOrchestrator, file_id: str):
    console.print("\n[bold green]Session Started.[/bold green] [italic]Type '/stats' for statistics, 'exit' to quit.[/italic]")
    while True:
        question = Prompt.ask("[bold cyan]Ask a question[/bold cyan]")
        command = question.strip().lower()
        if command in EXIT_COMMANDS:
            break
        if command == "/stats":
            print_stats(orchestrator)
            continue
        if command:
            handle_question(orchestrator, file_id, question)


def parse_args(argv=None):
    parser = argparse.ArgumentParser(prog="chunkscope", description="Retrieve ranked chunks from a text document.")
    parser.add_argument("path", help="Path to a UTF-8 text document")
    parser.add_argument("--file-id", default="", help="Identifier to index the document under (default: file name)")
    parser.add_argument("--in-memory", action="store_true", help="Use an ephemeral vector store instead of DB_PATH")
    return parser.parse_args(argv)


def main(argv=None):
    """Main application loop."""
    args = parse_args(argv)
    path = Path(args.path).expanduser()
    if not path.is_file():
        console.print(f"[bold red]Error: Path is not a regular file: '{path}'[/bold red]")
        sys.exit(1)

    settings = RetrievalSettings.from_env()
    display_welcome_banner(settings)

    client = build_chroma_client(None if args.in_memory else DB_PATH, CHROMA_HOST, CHROMA_PORT)
    store = ChromaVectorStore(client, CHROMA_COLLECTION, timeout_s=settings.store_timeout_s)
    orchestrator = RetrievalOrchestrator.build(
        settings,
        get_embeddings(),
        store,
        metrics=RetrievalMetrics(METRICS_DIR),
    )
    file_id = args.file_id or path.stem

    try:
        if index_document(orchestrator, path, file_id):
            run_session(orchestrator, file_id)
    except KeyboardInterrupt:
        pass
    finally:
        orchestrator.close()
        store.close()

    console.print("\n[bold magenta]Goodbye![/bold magenta]")
    sys.exit(0)


if __name__ == "__main__":
    main()
