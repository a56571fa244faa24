"""CLI entry point for requestkit.

Builds a request from a client profile or a bare URL plus command-line
options, then either shows what would be sent or sends it.
"""

from __future__ import annotations

import argparse
import io
import json
import mimetypes
import sys
from contextlib import ExitStack
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from requestkit.config_loader import build_request, load_client_config, select_client
from requestkit.errors import RequestKitError
from requestkit.logging_config import setup_logging
from requestkit.models import ClientConfig
from requestkit.request import HttpRequest
from requestkit.transport import HttpxTransport, Transport

_NO_BODY = object()


def non_negative_int(value: str) -> int:
    """Parse and validate a non-negative integer value.

    Raises:
        argparse.ArgumentTypeError: If value is not a non-negative integer.
    """
    try:
        result = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"Invalid integer '{value}'.")
    if result < 0:
        raise argparse.ArgumentTypeError(f"Value must not be negative, got {result}.")
    return result


def parse_param(value: str) -> tuple[str, str]:
    """Parse NAME=VALUE. The value may be empty or contain '='."""
    name, sep, param_value = value.partition("=")
    if not sep or not name:
        raise argparse.ArgumentTypeError(
            f"Invalid format '{value}'. Expected NAME=VALUE (e.g., 'q=hello')"
        )
    return (name, param_value)


def parse_header(value: str) -> tuple[str, str]:
    """Parse 'Name: value'."""
    name, sep, header_value = value.partition(":")
    if not sep or not name.strip():
        raise argparse.ArgumentTypeError(
            f"Invalid format '{value}'. Expected 'Name: value' (e.g., 'Accept: text/plain')"
        )
    return (name.strip(), header_value.strip())


@dataclass
class FileParam:
    """A --file option: a form field name, a local path and an optional content type."""

    name: str
    path: Path
    content_type: str | None = None


def parse_file(value: str) -> FileParam:
    """Parse NAME=PATH[;type=CONTENT_TYPE]."""
    name, sep, rest = value.partition("=")
    if not sep or not name or not rest:
        raise argparse.ArgumentTypeError(
            f"Invalid format '{value}'. Expected NAME=PATH[;type=CONTENT_TYPE]"
        )
    path, _, options = rest.partition(";")
    content_type = None
    if options:
        key, sep, option_value = options.partition("=")
        if key.strip() != "type" or not sep or not option_value.strip():
            raise argparse.ArgumentTypeError(
                f"Invalid file option '{options}'. Only 'type=CONTENT_TYPE' is supported"
            )
        content_type = option_value.strip()
    return FileParam(name=name, path=Path(path), content_type=content_type)


def parse_json_body(value: str) -> Any:
    """Parse a --json argument as a JSON document."""
    try:
        return json.loads(value)
    except json.JSONDecodeError as e:
        raise argparse.ArgumentTypeError(f"Invalid JSON body: {e}")


def parse_user(value: str) -> tuple[str, str]:
    """Parse USER:PASSWORD."""
    username, sep, password = value.partition(":")
    if not sep or not username:
        raise argparse.ArgumentTypeError(f"Invalid format '{value}'. Expected USER:PASSWORD")
    return (username, password)


@dataclass
class RequestArgs:
    """Parsed arguments for the show and send commands."""

    command: str
    config: Path | None
    client: str | None
    url: str | None
    method: str | None
    paths: list[str] = field(default_factory=list)
    params: list[tuple[str, str]] = field(default_factory=list)
    headers: list[tuple[str, str]] = field(default_factory=list)
    files: list[FileParam] = field(default_factory=list)
    json_body: Any = _NO_BODY
    data: str | None = None
    content_type: str | None = None
    timeout: int | None = None
    retries: int | None = None
    user: tuple[str, str] | None = None
    verbose: bool = False
    log_file: str | None = None


def _add_request_arguments(parser: argparse.ArgumentParser) -> None:
    source = parser.add_mutually_exclusive_group(required=True)
    source.add_argument(
        "--config",
        type=Path,
        help="Path to client configuration file (YAML); requires --client",
    )
    source.add_argument(
        "--url",
        type=str,
        help="Base URL to send to, without a config file",
    )
    parser.add_argument(
        "--client",
        type=str,
        help="Name of the client profile (must exist in config)",
    )
    parser.add_argument(
        "-X", "--method",
        type=str.upper,
        default=None,
        help="HTTP method (default: GET, or POST when files are attached)",
    )
    parser.add_argument(
        "--path",
        type=str,
        action="append",
        default=[],
        dest="paths",
        metavar="SEGMENT",
        help="Append a path segment to the URL (can be repeated)",
    )
    parser.add_argument(
        "-p", "--param",
        type=parse_param,
        action="append",
        default=[],
        dest="params",
        metavar="NAME=VALUE",
        help="Set a parameter (can be repeated; a repeated NAME becomes a list)",
    )
    parser.add_argument(
        "-H", "--header",
        type=parse_header,
        action="append",
        default=[],
        dest="headers",
        metavar="'NAME: VALUE'",
        help="Set a header (can be repeated)",
    )
    parser.add_argument(
        "--file",
        type=parse_file,
        action="append",
        default=[],
        dest="files",
        metavar="NAME=PATH[;type=CT]",
        help="Attach a file as a multipart part (forces POST; can be repeated)",
    )
    body = parser.add_mutually_exclusive_group()
    body.add_argument(
        "--json",
        type=parse_json_body,
        default=_NO_BODY,
        dest="json_body",
        metavar="JSON",
        help="JSON document to send as the body",
    )
    body.add_argument(
        "--data",
        type=str,
        default=None,
        metavar="TEXT",
        help="Raw body text; '@PATH' streams the file at PATH",
    )
    parser.add_argument(
        "--content-type",
        type=str,
        default=None,
        dest="content_type",
        help="Override the negotiated content type",
    )
    parser.add_argument(
        "--timeout",
        type=non_negative_int,
        default=None,
        metavar="MILLIS",
        help="Request timeout in milliseconds (0 for default)",
    )
    parser.add_argument(
        "--retries",
        type=non_negative_int,
        default=None,
        help="Retries on connection/timeout failures",
    )
    parser.add_argument(
        "--user",
        type=parse_user,
        default=None,
        metavar="USER:PASSWORD",
        help="Send HTTP basic auth credentials",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        default=False,
        help="Log at DEBUG level, including request bodies",
    )
    parser.add_argument(
        "--log-file",
        type=str,
        default=None,
        dest="log_file",
        help="Also write logs to this file",
    )


def build_parser() -> argparse.ArgumentParser:
    """Build the argument parser with show and send subcommands."""
    parser = argparse.ArgumentParser(
        prog="requestkit",
        description="Build HTTP requests and show or send them.",
    )

    subparsers = parser.add_subparsers(dest="command", required=True, help="Mode")

    show_parser = subparsers.add_parser(
        "show",
        help="Print the resolved URL, content type, headers and body without sending",
    )
    _add_request_arguments(show_parser)

    send_parser = subparsers.add_parser(
        "send",
        help="Send the request and print the response",
    )
    _add_request_arguments(send_parser)

    return parser


def parse_args(args: list[str] | None = None) -> RequestArgs:
    """Parse command-line arguments and return typed args dataclass.

    Raises:
        SystemExit: If arguments are invalid (argparse behavior).
    """
    parser = build_parser()
    namespace = parser.parse_args(args)

    if namespace.config is not None and not namespace.client:
        parser.error("--config requires --client")
    if namespace.config is None and namespace.client:
        parser.error("--client requires --config")

    return RequestArgs(
        command=namespace.command,
        config=namespace.config,
        client=namespace.client,
        url=namespace.url,
        method=namespace.method,
        paths=namespace.paths,
        params=namespace.params,
        headers=namespace.headers,
        files=namespace.files,
        json_body=namespace.json_body,
        data=namespace.data,
        content_type=namespace.content_type,
        timeout=namespace.timeout,
        retries=namespace.retries,
        user=namespace.user,
        verbose=namespace.verbose,
        log_file=namespace.log_file,
    )


def build_request_from_args(
    args: RequestArgs,
    transport: Transport | None = None,
    config: ClientConfig | None = None,
) -> HttpRequest:
    """Build the HttpRequest described by the parsed arguments.

    Options are applied in order: client profile or URL, method, paths,
    params, headers, files (which force POST), body, then overrides.
    An already loaded config may be passed to avoid reading the file again.
    """
    if args.config is not None:
        if config is None:
            config = load_client_config(args.config)
        request = build_request(select_client(config, args.client), transport)
    else:
        request = HttpRequest().with_url(args.url)
        if transport is not None:
            request = request.with_transport(transport)

    if args.method:
        request = request.with_method(args.method)

    for segment in args.paths:
        request = request.path(segment)

    # Repeated names collect into a list at the position of the first occurrence
    grouped: dict[str, list[str]] = {}
    for name, value in args.params:
        grouped.setdefault(name, []).append(value)
    for name, values in grouped.items():
        request = request.with_param(name, values[0] if len(values) == 1 else values)

    for name, value in args.headers:
        request = request.with_header(name, value)

    # Opened files stay open only if the request is built; the request then owns them
    with ExitStack() as opened:
        for file_param in args.files:
            content_type = (
                file_param.content_type
                or mimetypes.guess_type(file_param.path.name)[0]
                or "application/octet-stream"
            )
            stream = opened.enter_context(open(file_param.path, "rb"))
            request = request.with_binary_param(
                file_param.name, stream, content_type, file_param.path.name
            )

        if args.json_body is not _NO_BODY:
            request = request.with_body(args.json_body)
        elif args.data is not None:
            if args.data.startswith("@"):
                request = request.with_body(opened.enter_context(open(args.data[1:], "rb")))
            else:
                request = request.with_body(args.data.encode("utf-8"))

        if args.content_type is not None:
            request = request.with_content_type(args.content_type)
        if args.timeout is not None:
            request = request.with_timeout(args.timeout)
        if args.retries is not None:
            request = request.with_retries(args.retries)
        if args.user is not None:
            request = request.basic_auth(*args.user)

        opened.pop_all()

    return request


def main(args: list[str] | None = None) -> int:
    """Main entry point."""
    try:
        parsed = parse_args(args)

        # Config file logging settings apply unless overridden on the command line
        config = load_client_config(parsed.config) if parsed.config is not None else None
        level = config.logging.level if config is not None else "WARNING"
        log_file = config.logging.file if config is not None else None
        setup_logging("DEBUG" if parsed.verbose else level, parsed.log_file or log_file)

        if parsed.command == "show":
            return run_show(parsed, config)
        return run_send(parsed, config)

    except (RequestKitError, OSError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        print("\nInterrupted", file=sys.stderr)
        return 1


def run_show(args: RequestArgs, config: ClientConfig | None = None) -> int:
    """Run show mode: print what would be sent."""
    request = build_request_from_args(args, config=config)

    # Nothing is sent, so opened files are closed even when there is no body to write
    try:
        url = request.resolved_url
        content_type = request.effective_content_type
        buffer = io.BytesIO()
        request.write_body(buffer)
    finally:
        request.release_streams()

    print(f"{request.method} {url}")
    if content_type is not None:
        print(f"Content-Type: {content_type}")
    for name, value in request.headers.items():
        print(f"{name}: {value}")
    body = buffer.getvalue()
    if body:
        print()
        print(body.decode("utf-8", errors="replace"))
    return 0


def run_send(args: RequestArgs, config: ClientConfig | None = None) -> int:
    """Run send mode. Returns 1 for 4xx/5xx responses."""
    with HttpxTransport() as transport:
        response = build_request_from_args(args, transport, config).fetch()

        print(f"HTTP {response.status_code}")
        for name, value in response.headers.items():
            print(f"{name}: {value}")
        if response.content:
            print()
            print(response.text)

        return 0 if response.succeeded else 1


if __name__ == "__main__":
    sys.exit(main())
