"""Safebox CLI - encrypted vault tool."""

import asyncio
import base64
import binascii
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

from .. import __version__
from ..vault.crypto import LEGACY_SALT

app = typer.Typer(
    name="safebox",
    help="Client-side encrypted file vault.",
    no_args_is_help=True,
)

console = Console()

PASSPHRASE_OPTION = typer.Option(
    ...,
    "--passphrase", "-p",
    prompt=True,
    hide_input=True,
    envvar="SAFEBOX_PASSPHRASE",
    help="Vault passphrase",
)


def _salt(salt: Optional[str]) -> bytes:
    if salt is None:
        return LEGACY_SALT
    try:
        return base64.b64decode(salt, validate=True)
    except (binascii.Error, ValueError):
        console.print("[red]Error: --salt must be base64[/red]")
        raise typer.Exit(1)


@app.callback()
def callback(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
):
    """Configure logging before any command runs."""
    from ..config import get_settings
    from ..utils.logging import setup_logging

    settings = get_settings()
    setup_logging(
        level="DEBUG" if verbose else settings.log_level,
        log_file=settings.log_file,
    )


@app.command()
def encrypt(
    text: Optional[str] = typer.Argument(None, help="Text to encrypt"),
    input_file: Optional[Path] = typer.Option(
        None,
        "--file", "-f",
        help="Encrypt the contents of a file instead",
    ),
    passphrase: str = PASSPHRASE_OPTION,
    salt: Optional[str] = typer.Option(
        None,
        "--salt",
        help="Base64 vault salt (default: a new random salt, printed first)",
    ),
):
    """
    Encrypt text or a file into a "nonce:ciphertext" string.

    Without --salt a fresh salt is generated and printed on a "Salt:" line
    before the ciphertext; pass it to decrypt with --salt.
    """
    from ..vault.crypto import KeyDerivation
    from ..vault.crypto import encrypt as encrypt_data

    if input_file is not None:
        if not input_file.exists():
            console.print(f"[red]Error: File not found: {input_file}[/red]")
            raise typer.Exit(1)
        data: bytes | str = input_file.read_bytes()
    elif text is not None:
        data = text
    else:
        console.print("[red]Error: Provide TEXT or --file[/red]")
        raise typer.Exit(1)

    if salt is None:
        salt_bytes = KeyDerivation.generate_salt()
        typer.echo(f"Salt: {base64.b64encode(salt_bytes).decode('ascii')}")
    else:
        salt_bytes = _salt(salt)

    typer.echo(encrypt_data(data, passphrase, salt_bytes))


@app.command()
def decrypt(
    ciphertext: str = typer.Argument(..., help='"nonce:ciphertext" string'),
    passphrase: str = PASSPHRASE_OPTION,
    salt: Optional[str] = typer.Option(
        None,
        "--salt",
        help="Base64 vault salt (default: legacy salt)",
    ),
    output: Optional[Path] = typer.Option(
        None,
        "--output", "-o",
        help="Write the plaintext to a file",
    ),
):
    """
    Decrypt a "nonce:ciphertext" string.
    """
    from ..vault.crypto import decrypt as decrypt_data
    from ..vault.exceptions import CipherError

    try:
        plaintext = decrypt_data(ciphertext.strip(), passphrase, _salt(salt))
    except CipherError as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(1)

    if output is not None:
        output.write_bytes(plaintext)
        console.print(f"Wrote {len(plaintext)} bytes to {output}")
    else:
        typer.echo(plaintext.decode("utf-8", errors="replace"))


async def _pack_directory(directory: Path, passphrase: str) -> tuple[bytes, int]:
    from ..archive import export_vault
    from ..config.service import ConfigService
    from ..methods import SymmetricConfig
    from ..models.entry import kind_for_filename
    from ..sources import LocalSourceConfig, MemoryKeyValueStore
    from ..store import VaultEntryStore

    config = ConfigService(kv_store=MemoryKeyValueStore())
    config.add_method(SymmetricConfig(name="default", passphrase=passphrase))
    await config.add_source(LocalSourceConfig(name=directory.name or "vault", encryption="default"))
    store = VaultEntryStore(config)

    handles: dict[Path, Optional[int]] = {directory: None}
    for path in sorted(directory.rglob("*")):
        parent = handles[path.parent]
        if path.is_dir():
            handles[path] = store.add_folder(0, path.name, parent=parent).folder_id
        elif path.is_file():
            await store.add_file(0, path.name, kind_for_filename(path.name), path.read_bytes(), parent=parent)

    data = await export_vault(store.snapshot(), passphrase, config.profile)
    return data, len(store.entries(0))


@app.command()
def pack(
    directory: Path = typer.Argument(..., help="Directory to pack into a vault archive"),
    output: Optional[Path] = typer.Option(
        None,
        "--output", "-o",
        help="Archive path (default: ./safebox-vault.zip)",
    ),
    passphrase: str = PASSPHRASE_OPTION,
):
    """
    Encrypt every file in a directory into a vault archive.
    """
    from ..archive import FileSaver, deliver_archive

    if not directory.is_dir():
        console.print(f"[red]Error: Not a directory: {directory}[/red]")
        raise typer.Exit(1)

    console.print(f"\n[bold]Packing {directory}...[/bold]")
    data, count = asyncio.run(_pack_directory(directory, passphrase))

    target_dir = output.parent if output is not None else Path.cwd()
    result = deliver_archive(
        data,
        primary=None,
        fallback=FileSaver(target_dir),
        suggested_name=output.name if output is not None else None,
    )

    console.print(f"  Entries: {count}")
    console.print(f"  Size: {len(data) / 1024:.1f} KB")
    console.print(f"\nArchive saved to: {result.location}")


@app.command()
def inspect(
    archive: Path = typer.Argument(..., help="Vault archive (.zip)"),
    passphrase: str = PASSPHRASE_OPTION,
    allow_missing: bool = typer.Option(
        False,
        "--allow-missing",
        help="List entries whose payload is missing instead of failing",
    ),
):
    """
    List the entries of a vault archive.
    """
    from ..archive import import_vault
    from ..vault.exceptions import ArchiveImportError

    if not archive.exists():
        console.print(f"[red]Error: File not found: {archive}[/red]")
        raise typer.Exit(1)

    try:
        imported = asyncio.run(import_vault(archive.read_bytes(), passphrase, allow_missing))
    except ArchiveImportError as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(1)

    salt_note = " (legacy salt)" if imported.profile.is_legacy else ""
    console.print(f"\n[bold]Vault: {archive.name}[/bold]{salt_note}")

    for source_idx, entries in sorted(imported.sources.items()):
        names = {e.folder_id: e for e in entries if e.is_folder}

        def path_of(entry) -> str:
            parts = [entry.name]
            parent = entry.parent
            while parent is not None and parent in names:
                parts.append(names[parent].name)
                parent = names[parent].parent
            return "/".join(reversed(parts))

        table = Table(title=f"Source {source_idx} ({len(entries)} entries)")
        table.add_column("Path", style="cyan")
        table.add_column("Kind")
        table.add_column("Ciphertext", justify="right")

        for entry in entries:
            size = "-" if entry.is_folder else f"{len(entry.ciphertext):,}"
            table.add_row(path_of(entry) + ("/" if entry.is_folder else ""), entry.kind.value, size)

        console.print(table)

    if imported.missing:
        console.print(f"[yellow]Missing payloads: {len(imported.missing)}[/yellow]")
        for source_idx, name in imported.missing:
            console.print(f"  source {source_idx}: {name}")


async def _unpack_archive(data: bytes, passphrase: str, destination: Path) -> tuple[int, list[str]]:
    from ..archive import import_vault, merge_into
    from ..config.service import ConfigService
    from ..methods import SymmetricConfig
    from ..sources import LocalSourceConfig, MemoryKeyValueStore
    from ..store import VaultEntryStore
    from ..vault.exceptions import ArchiveImportError

    imported = await import_vault(data, passphrase)
    config = ConfigService(profile=imported.profile, kv_store=MemoryKeyValueStore())
    config.add_method(SymmetricConfig(name="default", passphrase=passphrase))
    store = VaultEntryStore(config)

    for source_idx in sorted(imported.sources):
        while len(config.sources) <= source_idx:
            await config.add_source(
                LocalSourceConfig(name=f"source-{len(config.sources)}", encryption="default")
            )
    merge_into(store, imported, config)

    base = destination.resolve()
    written = 0
    errors: list[str] = []
    for source_idx in store.source_indices():
        root = destination / f"source-{source_idx}" if len(store.source_indices()) > 1 else destination
        files = [i for i, e in enumerate(store.entries(source_idx)) if not e.is_folder]
        result = await store.bulk_decrypt(source_idx, files)

        for item in result.results:
            entry = store.entries(source_idx)[item.index]
            if not item.ok:
                errors.append(f"{entry.name}: {item.error}")
                continue
            target = root / store.path_of(source_idx, entry.parent) / entry.name
            if not target.resolve().is_relative_to(base):
                raise ArchiveImportError(f"Entry {entry.name!r} resolves outside {destination}")
            target.parent.mkdir(parents=True, exist_ok=True)
            cache = entry.plaintext_cache
            target.write_bytes(cache.encode("utf-8") if isinstance(cache, str) else cache)
            written += 1
        store.lock_all(source_idx)

    return written, errors


@app.command()
def unpack(
    archive: Path = typer.Argument(..., help="Vault archive (.zip)"),
    output: Path = typer.Argument(..., help="Directory to write decrypted files into"),
    passphrase: str = PASSPHRASE_OPTION,
):
    """
    Decrypt every file in a vault archive packed with a single passphrase.
    """
    from ..vault.exceptions import VaultError

    if not archive.exists():
        console.print(f"[red]Error: File not found: {archive}[/red]")
        raise typer.Exit(1)

    try:
        written, errors = asyncio.run(_unpack_archive(archive.read_bytes(), passphrase, output))
    except VaultError as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(1)

    console.print(f"\n[bold green]Unpacked {written} files to {output}[/bold green]")
    if errors:
        console.print(f"[yellow]Errors: {len(errors)}[/yellow]")
        for error in errors:
            console.print(f"  {error}")
        raise typer.Exit(1)


@app.command()
def version():
    """Show version information."""
    console.print(f"Safebox v{__version__}")
    console.print("Client-side encrypted file vault")


def main():
    """Entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
