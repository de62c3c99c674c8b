from __future__ import annotations

import argparse
import json
import sys
from itertools import zip_longest
from typing import Any, Optional

from rich.console import Console
from rich.table import Table

from .app import CascadeApp
from .config import LOG_LEVELS, load_settings, resolve_state_dir
from .errors import CascadeError, NotFoundError
from .logging_utils import configure_logging
from .models import Board, Task, TaskStatus
from .services.transfer import CONFLICT_MODES

_MIN_PREFIX = 4


def _app(args: argparse.Namespace) -> CascadeApp:
    return CascadeApp(resolve_state_dir(args.state_dir)).start()


def _write(payload: Any) -> None:
    sys.stdout.write(json.dumps(payload, indent=2) + '\n')


def _board_summary(board: Board, current_id: Optional[str]) -> dict[str, Any]:
    return {
        'id': board.id,
        'name': board.name,
        'description': board.description,
        'color': board.color,
        'is_default': board.is_default,
        'is_archived': board.is_archived,
        'current': board.id == current_id,
        'tasks': len(board.tasks),
        'archived_tasks': len(board.archived_tasks),
    }


def _find_board(app: CascadeApp, ref: Optional[str]) -> Board:
    """Resolve a board by id or (case-insensitive) name; the current board when omitted."""
    if ref is None:
        board = app.store.get_current_board()
        if board is None:
            raise NotFoundError('No board selected')
        return board
    board = app.store.get_board(ref)
    if board is not None:
        return board
    for candidate in app.store.get('boards'):
        if candidate.name.lower() == ref.lower():
            return candidate
    raise NotFoundError(f'Board not found: {ref}')


def _find_task_id(app: CascadeApp, ref: str, archived: bool = False) -> str:
    """Resolve a task id, accepting a unique prefix of at least four characters."""
    pool: list[Task] = []
    for board in app.store.get('boards'):
        pool.extend(board.archived_tasks if archived else board.tasks)
    for task in pool:
        if task.id == ref:
            return task.id
    matches = [t.id for t in pool if len(ref) >= _MIN_PREFIX and t.id.startswith(ref)]
    if len(matches) == 1:
        return matches[0]
    if matches:
        raise NotFoundError(f'Task id prefix is ambiguous: {ref}')
    raise NotFoundError(f'Task not found: {ref}')


# -- board commands -----------------------------------------------------------

def _board_list(args: argparse.Namespace) -> int:
    app = _app(args)
    boards = app.boards.get_all_boards() if args.all else app.boards.get_active_boards()
    current_id = app.store.get('current_board_id')
    _write({'boards': [_board_summary(b, current_id) for b in boards]})
    return 0


def _board_create(args: argparse.Namespace) -> int:
    app = _app(args)
    options: dict[str, Any] = {'description': args.description}
    if args.color:
        options['color'] = args.color
    board = app.boards.create_board(args.name, **options)
    _write({'board': board.to_dict()})
    return 0


def _board_switch(args: argparse.Namespace) -> int:
    app = _app(args)
    board = app.boards.switch_to_board(_find_board(app, args.board).id)
    _write({'current_board_id': board.id, 'name': board.name})
    return 0


def _board_rename(args: argparse.Namespace) -> int:
    app = _app(args)
    board = app.boards.update_board(_find_board(app, args.board).id, name=args.name)
    _write({'board': _board_summary(board, app.store.get('current_board_id'))})
    return 0


def _board_delete(args: argparse.Namespace) -> int:
    app = _app(args)
    board = app.boards.delete_board(_find_board(app, args.board).id)
    _write({'deleted': board.id, 'current_board_id': app.store.get('current_board_id')})
    return 0


def _board_archive(args: argparse.Namespace) -> int:
    app = _app(args)
    board = app.boards.archive_board(_find_board(app, args.board).id)
    _write({'board': _board_summary(board, app.store.get('current_board_id'))})
    return 0


def _board_unarchive(args: argparse.Namespace) -> int:
    app = _app(args)
    board = app.boards.unarchive_board(_find_board(app, args.board).id)
    _write({'board': _board_summary(board, app.store.get('current_board_id'))})
    return 0


def _board_duplicate(args: argparse.Namespace) -> int:
    app = _app(args)
    board = app.boards.duplicate_board(_find_board(app, args.board).id, new_name=args.name)
    _write({'board': board.to_dict()})
    return 0


def _board_show(args: argparse.Namespace) -> int:
    app = _app(args)
    board = _find_board(app, args.board)
    table = Table(title=board.name, show_header=True)
    table.add_column('To Do', style='cyan')
    table.add_column('Doing', style='yellow')
    table.add_column('Done', style='green')
    columns = [[t.text for t in board.tasks_by_status(status)] for status in TaskStatus]
    for row in zip_longest(*columns, fillvalue=''):
        table.add_row(*row)
    Console().print(table)
    return 0


def _board_stats(args: argparse.Namespace) -> int:
    app = _app(args)
    stats = app.boards.get_board_statistics(_find_board(app, args.board).id)
    _write(stats.to_dict() if stats else {})
    return 0


# -- task commands ------------------------------------------------------------

def _task_add(args: argparse.Namespace) -> int:
    app = _app(args)
    board_id = _find_board(app, args.board).id if args.board else None
    task = app.tasks.create_task(args.text, board_id=board_id)
    _write({'task': task.to_dict()})
    return 0


def _task_list(args: argparse.Namespace) -> int:
    app = _app(args)
    board = _find_board(app, args.board)
    tasks = board.archived_tasks if args.archived else board.tasks
    if args.status:
        wanted = TaskStatus.parse(args.status)
        tasks = tuple(t for t in tasks if t.status == wanted)
    _write({'board_id': board.id, 'tasks': [t.to_dict() for t in tasks]})
    return 0


def _task_move(args: argparse.Namespace) -> int:
    app = _app(args)
    task = app.tasks.move_task_to_status(_find_task_id(app, args.task_id), args.status)
    _write({'task': task.to_dict()})
    return 0


def _task_edit(args: argparse.Namespace) -> int:
    app = _app(args)
    task = app.tasks.update_task(_find_task_id(app, args.task_id), text=args.text)
    _write({'task': task.to_dict()})
    return 0


def _task_delete(args: argparse.Namespace) -> int:
    app = _app(args)
    task = app.tasks.delete_task(_find_task_id(app, args.task_id))
    _write({'deleted': task.id})
    return 0


def _task_archive(args: argparse.Namespace) -> int:
    app = _app(args)
    task = app.tasks.archive_task(_find_task_id(app, args.task_id))
    _write({'task': task.to_dict()})
    return 0


def _task_restore(args: argparse.Namespace) -> int:
    app = _app(args)
    board_id = _find_board(app, args.board).id if args.board else None
    task = app.tasks.restore_task(_find_task_id(app, args.task_id, archived=True), board_id=board_id)
    _write({'task': task.to_dict()})
    return 0


def _task_archive_done(args: argparse.Namespace) -> int:
    app = _app(args)
    board = _find_board(app, args.board)
    _write({'board_id': board.id, 'archived': app.tasks.archive_completed_tasks(board.id)})
    return 0


def _task_search(args: argparse.Namespace) -> int:
    app = _app(args)
    board_id = _find_board(app, args.board).id if args.board else None
    tasks = app.tasks.search_tasks(args.term, board_id=board_id)
    _write({'term': args.term, 'tasks': [t.to_dict() for t in tasks]})
    return 0


# -- data commands ------------------------------------------------------------

def _export(args: argparse.Namespace) -> int:
    app = _app(args)
    if args.path:
        path = app.transfer.export_to_file(args.path)
        _write({'path': str(path), 'boards': len(app.store.get('boards'))})
    else:
        _write(app.transfer.export_data())
    return 0


def _import(args: argparse.Namespace) -> int:
    app = _app(args)
    summary = app.transfer.import_from_file(
        args.path,
        on_conflict=args.on_conflict,
        max_size=app.settings.max_import_file_size,
    )
    _write(summary.to_dict())
    return 0


def _reset(args: argparse.Namespace) -> int:
    if not args.yes:
        sys.stderr.write('Refusing to reset without --yes\n')
        return 1
    app = _app(args)
    app.reset_app()
    _write({'reset': True, 'current_board_id': app.store.get('current_board_id')})
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog='cascade', description='Cascade Tasks: multi-board kanban task lists')
    parser.add_argument('--state-dir', default=None, help='State directory (default: $CASCADE_STATE_DIR or ~/.cascade_tasks)')
    parser.add_argument(
        '--log-level',
        default=None,
        type=str.upper,
        choices=LOG_LEVELS,
        help='Log level (default: from config.yaml)')
    subparsers = parser.add_subparsers(dest='command', required=True)

    board = subparsers.add_parser('board', help='Manage boards')
    board_sub = board.add_subparsers(dest='board_cmd', required=True)
    blist = board_sub.add_parser('list', help='List boards')
    blist.add_argument('--all', action='store_true', help='Include archived boards')
    blist.set_defaults(func=_board_list)
    bcreate = board_sub.add_parser('create', help='Create a board and switch to it')
    bcreate.add_argument('name')
    bcreate.add_argument('--description', default='')
    bcreate.add_argument('--color', default=None)
    bcreate.set_defaults(func=_board_create)
    bswitch = board_sub.add_parser('switch', help='Switch the current board')
    bswitch.add_argument('board')
    bswitch.set_defaults(func=_board_switch)
    brename = board_sub.add_parser('rename', help='Rename a board')
    brename.add_argument('board')
    brename.add_argument('name')
    brename.set_defaults(func=_board_rename)
    bdelete = board_sub.add_parser('delete', help='Delete a board')
    bdelete.add_argument('board')
    bdelete.set_defaults(func=_board_delete)
    barchive = board_sub.add_parser('archive', help='Archive a board')
    barchive.add_argument('board')
    barchive.set_defaults(func=_board_archive)
    bunarchive = board_sub.add_parser('unarchive', help='Unarchive a board')
    bunarchive.add_argument('board')
    bunarchive.set_defaults(func=_board_unarchive)
    bdup = board_sub.add_parser('duplicate', help='Duplicate a board with its tasks')
    bdup.add_argument('board')
    bdup.add_argument('--name', default=None)
    bdup.set_defaults(func=_board_duplicate)
    bshow = board_sub.add_parser('show', help='Show a board as columns')
    bshow.add_argument('board', nargs='?', default=None)
    bshow.set_defaults(func=_board_show)
    bstats = board_sub.add_parser('stats', help='Show board statistics')
    bstats.add_argument('board', nargs='?', default=None)
    bstats.set_defaults(func=_board_stats)

    task = subparsers.add_parser('task', help='Manage tasks')
    task_sub = task.add_subparsers(dest='task_cmd', required=True)
    tadd = task_sub.add_parser('add', help='Add a task')
    tadd.add_argument('text')
    tadd.add_argument('--board', default=None)
    tadd.set_defaults(func=_task_add)
    tlist = task_sub.add_parser('list', help='List tasks')
    tlist.add_argument('--board', default=None)
    tlist.add_argument('--status', default=None, choices=[s.value for s in TaskStatus])
    tlist.add_argument('--archived', action='store_true')
    tlist.set_defaults(func=_task_list)
    tmove = task_sub.add_parser('move', help='Move a task to another column')
    tmove.add_argument('task_id')
    tmove.add_argument('status', choices=[s.value for s in TaskStatus])
    tmove.set_defaults(func=_task_move)
    tedit = task_sub.add_parser('edit', help='Change a task text')
    tedit.add_argument('task_id')
    tedit.add_argument('text')
    tedit.set_defaults(func=_task_edit)
    tdelete = task_sub.add_parser('delete', help='Delete a task')
    tdelete.add_argument('task_id')
    tdelete.set_defaults(func=_task_delete)
    tarchive = task_sub.add_parser('archive', help='Archive a task')
    tarchive.add_argument('task_id')
    tarchive.set_defaults(func=_task_archive)
    trestore = task_sub.add_parser('restore', help='Restore an archived task')
    trestore.add_argument('task_id')
    trestore.add_argument('--board', default=None)
    trestore.set_defaults(func=_task_restore)
    tdone = task_sub.add_parser('archive-done', help='Archive all done tasks of a board')
    tdone.add_argument('--board', default=None)
    tdone.set_defaults(func=_task_archive_done)
    tsearch = task_sub.add_parser('search', help='Search task texts')
    tsearch.add_argument('term')
    tsearch.add_argument('--board', default=None)
    tsearch.set_defaults(func=_task_search)

    export = subparsers.add_parser('export', help='Export all boards as JSON')
    export.add_argument('path', nargs='?', default=None)
    export.set_defaults(func=_export)

    imp = subparsers.add_parser('import', help='Import boards or tasks from JSON')
    imp.add_argument('path')
    imp.add_argument('--on-conflict', default='overwrite', choices=list(CONFLICT_MODES))
    imp.set_defaults(func=_import)

    reset = subparsers.add_parser('reset', help='Delete all data and start over')
    reset.add_argument('--yes', action='store_true')
    reset.set_defaults(func=_reset)
    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    handler = getattr(args, 'func', None)
    if handler is None:
        parser.print_help()
        return 1
    settings, _ = load_settings(resolve_state_dir(args.state_dir))
    configure_logging(args.log_level or settings.effective_log_level)
    try:
        return int(handler(args) or 0)
    except CascadeError as exc:
        sys.stderr.write(f"Error: {exc}\n")
        return 1


if __name__ == '__main__':
    raise SystemExit(main())
