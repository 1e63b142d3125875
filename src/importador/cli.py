from __future__ import annotations

import argparse
import json
import logging
import sys
from decimal import Decimal
from importlib.resources import files
from pathlib import Path
from typing import Any, Optional

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_INVALID = 1
EXIT_PERSISTENCE = 2
EXIT_NEEDS_CONFIRMATION = 3

_YES = ("s", "sim", "y", "yes")


def _json_default(value: Any) -> Any:
    if isinstance(value, Decimal):
        return str(value)
    raise TypeError(f"Tipo não serializável: {type(value).__name__}")


def _print_json(data: Any) -> None:
    print(json.dumps(data, ensure_ascii=False, indent=2, default=_json_default))


def _configure_logging(verbose: bool) -> None:
    from importador.config import get_log_level

    level = logging.DEBUG if verbose else get_log_level()
    logging.basicConfig(level=level, format="%(levelname)s %(name)s: %(message)s", stream=sys.stderr)


def _read_file(path: str) -> Optional[bytes]:
    try:
        return Path(path).read_bytes()
    except OSError as e:
        print(f"Erro: não foi possível ler {path}: {e}", file=sys.stderr)
        return None


def _init_config() -> None:
    """Copy the bundled settings template and create the default database."""
    from importador.config import get_config_dir, get_data_dir

    config_dir = get_config_dir()
    data_dir = get_data_dir()
    templates = files("importador") / "templates"

    config_dir.mkdir(parents=True, exist_ok=True)
    data_dir.mkdir(parents=True, exist_ok=True)

    rel = "settings.yaml.example"
    dest = config_dir / rel
    if dest.exists():
        print(f"  já existe: {dest}")
    else:
        with (templates / rel).open("rb") as f:
            dest.write_bytes(f.read())
        print(f"  criado: {dest}")

    store = _open_store()
    store.dispose()

    print()
    print(f"Configuração: {config_dir}")
    print(f"Dados:   {data_dir}")
    print()
    print("Próximos passos:")
    print(f"  1. cp {dest} {config_dir / 'settings.yaml'}")
    print("  2. Ajuste os valores de precificação em settings.yaml")
    print("  3. Execute: importador-nfe ingest <arquivo.xml>")


def _open_store():
    """Open the configured store, creating the schema when missing."""
    from importador.config import get_data_dir, get_database_url
    from importador.services.store import DocumentStore

    url = get_database_url()
    if url.startswith("sqlite:///"):
        get_data_dir().mkdir(parents=True, exist_ok=True)
    store = DocumentStore(url)
    store.create_schema()
    return store


def _build_pipeline(store):
    from importador.config import load_pricing_defaults
    from importador.models.document import PricingSettings
    from importador.services.hooks import (
        MemoryCache,
        SubscriberHub,
        cache_invalidation_hook,
        notification_hook,
    )
    from importador.services.ingestion import IngestionPipeline

    hub = SubscriberHub()
    hub.subscribe(lambda event: logger.info("Evento %s: NFe %s", event["action"], event["id"]))
    return IngestionPipeline(
        store,
        hooks=[cache_invalidation_hook(MemoryCache()), notification_hook(hub)],
        default_pricing=PricingSettings.from_dict(load_pricing_defaults()),
    )


def _confirm_replace(pending) -> bool:
    existing = pending.existing
    print(
        f"A NFe {existing.numero} de {existing.fornecedor} já está registrada como {existing.id}.",
        file=sys.stderr,
    )
    try:
        answer = input("Gravar mesmo assim como novo registro? [s/N]: ").strip().lower()
    except (EOFError, KeyboardInterrupt):
        print()
        return False
    return answer in _YES


def _cmd_validate(args: argparse.Namespace) -> int:
    from importador.services.ingestion import validate_raw

    raw = _read_file(args.file)
    if raw is None:
        return EXIT_INVALID
    report = validate_raw(raw)
    _print_json(report.to_dict())
    return EXIT_OK if report.is_valid else EXIT_INVALID


def _cmd_ingest(args: argparse.Namespace) -> int:
    from importador.models.results import ValidationReport
    from importador.services.exceptions import PersistenceError
    from importador.services.ingestion import PendingResolution

    raw = _read_file(args.file)
    if raw is None:
        return EXIT_INVALID

    store = _open_store()
    try:
        pipeline = _build_pipeline(store)
        try:
            outcome = pipeline.ingest(raw, document_id=args.id, force_replace=args.force)
            if isinstance(outcome, PendingResolution):
                _print_json(outcome.to_dict())
                if args.yes:
                    confirmed = True
                elif sys.stdin.isatty():
                    confirmed = _confirm_replace(outcome)
                else:
                    return EXIT_NEEDS_CONFIRMATION
                outcome = outcome.resolve(confirmed)
                if outcome is None:
                    print("Importação cancelada.", file=sys.stderr)
                    return EXIT_INVALID
        except PersistenceError as e:
            print(f"Erro ao gravar NFe ({e.category}): {e}", file=sys.stderr)
            return EXIT_PERSISTENCE

        _print_json(outcome.to_dict())
        if isinstance(outcome, ValidationReport):
            return EXIT_INVALID
        return EXIT_OK
    finally:
        store.dispose()


def _cmd_list(args: argparse.Namespace) -> int:
    store = _open_store()
    try:
        _print_json(store.list_documents())
    finally:
        store.dispose()
    return EXIT_OK


def _item_view(document, index: int, item) -> dict[str, Any]:
    """Line item with suggested sale prices for display."""
    from importador.utils.formatters import round_price, sale_price

    pricing = document.pricing
    unit_cost = item.valor_liquido / item.quantidade if item.quantidade > 0 else Decimal("0")
    unit_cost = unit_cost * (1 + pricing.imposto_entrada / 100)
    return {
        "indice": index,
        "oculto": index in document.itens_ocultos,
        **item.to_row(),
        "custo_unitario": round_price(unit_cost, "none"),
        "preco_primario": round_price(
            sale_price(unit_cost, pricing.markup_primario), pricing.arredondamento
        ),
        "preco_secundario": round_price(
            sale_price(unit_cost, pricing.markup_secundario), pricing.arredondamento
        ),
    }


def _cmd_show(args: argparse.Namespace) -> int:
    from importador.utils.formatters import format_access_key, format_brl

    store = _open_store()
    try:
        document = store.get_document(args.id)
    finally:
        store.dispose()
    if document is None:
        print(f"Erro: NFe não encontrada: {args.id}", file=sys.stderr)
        return EXIT_INVALID

    _print_json(
        {
            **document.to_row(),
            "itens_ocultos": list(document.itens_ocultos),
            "chave_formatada": format_access_key(document.chave or ""),
            "valor_formatado": format_brl(document.valor),
            "produtos": [
                _item_view(document, i, item) for i, item in enumerate(document.produtos)
            ],
        }
    )
    return EXIT_OK


def _parse_indices(value: str) -> list[int]:
    try:
        return [int(v) for v in value.split(",") if v.strip()]
    except ValueError:
        raise argparse.ArgumentTypeError(f"lista de índices inválida: {value}") from None


def _cmd_settings(args: argparse.Namespace) -> int:
    from importador.services.exceptions import PersistenceError

    changes = {
        key: value
        for key, value in (
            ("imposto_entrada", args.imposto_entrada),
            ("markup_primario", args.markup_primario),
            ("markup_secundario", args.markup_secundario),
            ("arredondamento", args.arredondamento),
            ("valor_frete", args.frete),
            ("itens_ocultos", args.ocultar),
            ("mostrar_ocultos", args.mostrar_ocultos),
        )
        if value is not None
    }
    if not changes:
        print("Nada a alterar.", file=sys.stderr)
        return EXIT_INVALID

    store = _open_store()
    try:
        document = _build_pipeline(store).update_settings(args.id, **changes)
    except ValueError as e:
        print(f"Erro: {e}", file=sys.stderr)
        return EXIT_INVALID
    except PersistenceError as e:
        print(f"Erro ao gravar configurações ({e.category}): {e}", file=sys.stderr)
        return EXIT_PERSISTENCE
    finally:
        store.dispose()

    if document is None:
        print(f"Erro: NFe não encontrada: {args.id}", file=sys.stderr)
        return EXIT_INVALID
    _print_json(
        {
            **document.summary(),
            **document.pricing.to_dict(),
            "itens_ocultos": list(document.itens_ocultos),
            "mostrar_ocultos": document.mostrar_ocultos,
        }
    )
    return EXIT_OK


def _cmd_delete(args: argparse.Namespace) -> int:
    from importador.services.exceptions import PersistenceError

    store = _open_store()
    try:
        deleted = _build_pipeline(store).delete(args.id)
    except PersistenceError as e:
        print(f"Erro ao excluir NFe ({e.category}): {e}", file=sys.stderr)
        return EXIT_PERSISTENCE
    finally:
        store.dispose()

    if not deleted:
        print(f"Erro: NFe não encontrada: {args.id}", file=sys.stderr)
        return EXIT_INVALID
    _print_json({"id": args.id, "action": "deleted"})
    return EXIT_OK


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="importador-nfe", description="Importação e validação de NFe (XML)"
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Log detalhado em stderr")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("init", help="Cria diretórios, modelo de configuração e banco")

    p = sub.add_parser("validate", help="Valida a estrutura de um XML sem gravar")
    p.add_argument("file")
    p.set_defaults(func=_cmd_validate)

    p = sub.add_parser("ingest", help="Valida e grava uma NFe")
    p.add_argument("file")
    p.add_argument("--id", help="Identificador do registro (padrão: chave de acesso)")
    p.add_argument("--force", action="store_true", help="Grava mesmo se a chave já existir")
    p.add_argument("--yes", action="store_true", help="Confirma a substituição sem perguntar")
    p.set_defaults(func=_cmd_ingest)

    p = sub.add_parser("list", help="Lista as NFes gravadas")
    p.set_defaults(func=_cmd_list)

    p = sub.add_parser("show", help="Exibe uma NFe com seus produtos")
    p.add_argument("id")
    p.set_defaults(func=_cmd_show)

    p = sub.add_parser("settings", help="Altera precificação e itens ocultos de uma NFe")
    p.add_argument("id")
    p.add_argument("--imposto-entrada")
    p.add_argument("--markup-primario")
    p.add_argument("--markup-secundario")
    p.add_argument("--arredondamento", choices=["none", "90", "50"])
    p.add_argument("--frete")
    p.add_argument("--ocultar", type=_parse_indices, help="Índices separados por vírgula")
    p.add_argument("--mostrar-ocultos", action=argparse.BooleanOptionalAction, default=None)
    p.set_defaults(func=_cmd_settings)

    p = sub.add_parser("delete", help="Exclui uma NFe e seus produtos")
    p.add_argument("id")
    p.set_defaults(func=_cmd_delete)

    return parser


def run_cli(argv: Optional[list[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    _configure_logging(args.verbose)
    if args.command == "init":
        _init_config()
        return EXIT_OK
    return args.func(args)


def main() -> None:
    """Entry point for the importador-nfe CLI."""
    sys.exit(run_cli())


if __name__ == "__main__":
    main()
