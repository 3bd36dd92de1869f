"""Command-line interface for mded."""


import argparse
import json
import logging
import sys
from terminaltables import AsciiTable
from mded.api import Mded
from mded.errors import Error
from mded.models import ApiResult, NoteInfo


def _emit(args, result: ApiResult, text: str = None) -> int:
    if args.json:
        print(json.dumps(result.as_json()))
    elif text is not None:
        print(text)
    return 0


def _print_note_info(info: NoteInfo) -> None:
    print(f'id: {info.id}')
    print(f'title: {info.title}')
    print(f'folder: {info.folder}')
    print(f'modified: {info.modified}')
    print(f'created: {info.created}')
    print(f'pinned: {info.pinned}')


def _folders(args, app: Mded) -> int:
    folders = app.repo.list_folders()
    if args.json:
        print(json.dumps([f.as_json() for f in folders]))
    else:
        for folder in folders:
            print(folder.name)
    return 0


def _mkdir(args, app: Mded) -> int:
    app.repo.create_folder(args.name[0])
    return _emit(args, ApiResult.ok())


def _rmdir(args, app: Mded) -> int:
    app.repo.delete_folder(args.name[0])
    return _emit(args, ApiResult.ok())


def _rename_folder(args, app: Mded) -> int:
    app.repo.rename_folder(args.old[0], args.new[0])
    return _emit(args, ApiResult.ok())


def _ls(args, app: Mded) -> int:
    infos = app.repo.list_notes(args.folder)
    if args.json:
        print(json.dumps([i.as_json() for i in infos]))
    elif args.table:
        data = [('ID', 'Title', 'Folder', 'Modified', 'Pinned')]
        data.extend((i.id, i.title, i.folder, i.modified.strftime('%Y-%m-%d %H:%M'), '*' if i.pinned else '')
                    for i in infos)
        print(AsciiTable(data).table)
    else:
        for info in infos:
            print('--------------------')
            _print_note_info(info)
    return 0


def _cat(args, app: Mded) -> int:
    content = app.repo.read_note(args.id[0], args.folder)
    if args.json:
        print(json.dumps(ApiResult.ok(content=content).as_json()))
    else:
        sys.stdout.write(content)
    return 0


def _save(args, app: Mded) -> int:
    app.repo.save_note(args.id[0], sys.stdin.read(), args.folder)
    return _emit(args, ApiResult.ok())


def _new(args, app: Mded) -> int:
    note_id, _ = app.repo.create_note(args.folder)
    return _emit(args, ApiResult.ok(note_id=note_id), note_id)


def _rm(args, app: Mded) -> int:
    app.repo.delete_note(args.id[0], args.folder)
    return _emit(args, ApiResult.ok())


def _rename(args, app: Mded) -> int:
    new_id = app.repo.rename_note(args.id[0], args.new[0], args.folder)
    return _emit(args, ApiResult.ok(note_id=new_id), new_id)


def _mv(args, app: Mded) -> int:
    app.repo.move_note(args.id[0], args.src[0], args.dest[0])
    return _emit(args, ApiResult.ok())


def _pin(args, app: Mded) -> int:
    pinned = app.toggle_pin_note(args.id[0])
    return _emit(args, ApiResult.ok(pinned=pinned), 'pinned' if pinned else 'unpinned')


def _order(args, app: Mded) -> int:
    if args.set:
        try:
            order = json.loads(sys.stdin.read())
        except ValueError as e:
            raise Error(f'Note order is not valid JSON: {e}', e) from e
        if not isinstance(order, dict):
            raise Error('Note order must be a JSON object')
        app.repo.save_note_order(order)
        return _emit(args, ApiResult.ok())
    print(json.dumps(app.repo.get_note_order(), indent=None if args.json else 2))
    return 0


def _screenshot(args, app: Mded) -> int:
    image_id, image_path = app.repo.save_screenshot(sys.stdin.read().strip())
    return _emit(args, ApiResult.ok(image_id=image_id, image_path=image_path), image_path)


def _import(args, app: Mded) -> int:
    content, file_name, file_path = app.repo.read_external_file(args.path[0])
    if args.json:
        print(json.dumps(ApiResult.ok(content=content, file_name=file_name, file_path=file_path).as_json()))
    else:
        sys.stdout.write(content)
    return 0


def _assets(args, app: Mded) -> int:
    print(app.repo.get_assets_path())
    return 0


def _last_note(args, app: Mded) -> int:
    if args.clear:
        app.save_last_note(None, None)
    elif args.id:
        app.save_last_note(args.id, args.folder)
    last = app.get_last_note()
    if args.json:
        print(json.dumps(last.as_json()))
    elif last.note_id:
        print(f'{last.folder or ""}\t{last.note_id}')
    return 0


def _shortcut(args, app: Mded) -> int:
    if args.key:
        app.set_global_shortcut(args.key)
    print(app.get_global_shortcut())
    return 0


def _opacity(args, app: Mded) -> int:
    if args.value is not None:
        opacity = app.set_window_opacity(args.value)
    else:
        opacity = app.get_window_opacity()
    return _emit(args, ApiResult.ok(opacity=opacity), str(opacity))


def argparser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser()
    parser.set_defaults(func=None, json=False)
    parser.add_argument('-v', '--verbose', action='store_true', help='Log debug output to stderr.')

    subs = parser.add_subparsers(title='Commands')

    def add(name, func, help, json_flag=True):
        sub = subs.add_parser(name, help=help)
        if json_flag:
            sub.add_argument('-j', '--json', action='store_true', help='Output as JSON.')
        sub.set_defaults(func=func)
        return sub

    def add_folder_option(sub):
        sub.add_argument('-f', '--folder', help='Folder containing the note. Defaults to the notes root.')

    add('folders', _folders, 'List folders, starting with the virtual "All Notes" folder.')

    p_mkdir = add('mkdir', _mkdir, 'Create a folder.')
    p_mkdir.add_argument('name', nargs=1)

    p_rmdir = add('rmdir', _rmdir, 'Delete a folder and every note in it.')
    p_rmdir.add_argument('name', nargs=1)

    p_rename_folder = add('rename-folder', _rename_folder, 'Rename a folder.')
    p_rename_folder.add_argument('old', nargs=1)
    p_rename_folder.add_argument('new', nargs=1)

    p_ls = add('ls', _ls, 'List notes, pinned first and then most recently modified first.')
    p_ls.add_argument('folder', nargs='?', help='Folder to list. If omitted, notes from all folders are listed.')
    p_ls.add_argument('-t', '--table', action='store_true', help='Format output as a table.')

    p_cat = add('cat', _cat, 'Print the content of a note.')
    p_cat.add_argument('id', nargs=1)
    add_folder_option(p_cat)

    p_save = add('save', _save, 'Replace the content of a note with standard input, creating it if needed.')
    p_save.add_argument('id', nargs=1)
    add_folder_option(p_save)

    p_new = add('new', _new, 'Create a new note and print its id.')
    add_folder_option(p_new)

    p_rm = add('rm', _rm, 'Delete a note.')
    p_rm.add_argument('id', nargs=1)
    add_folder_option(p_rm)

    p_rename = add('rename', _rename, 'Rename a note within its folder.')
    p_rename.add_argument('id', nargs=1)
    p_rename.add_argument('new', nargs=1)
    add_folder_option(p_rename)

    p_mv = add('mv', _mv, 'Move a note to another folder. Use "" for the notes root.')
    p_mv.add_argument('id', nargs=1)
    p_mv.add_argument('src', nargs=1)
    p_mv.add_argument('dest', nargs=1)

    p_pin = add('pin', _pin, 'Pin an unpinned note, or unpin a pinned one.')
    p_pin.add_argument('id', nargs=1)

    p_order = add('order', _order, 'Print the custom note order as JSON.')
    p_order.add_argument('--set', action='store_true', help='Replace the note order with JSON from standard input.')

    add('screenshot', _screenshot,
        'Save base64 PNG data (optionally a data: URL) from standard input to the assets folder.')

    p_import = add('import', _import, 'Print the content of a markdown file from anywhere on disk.')
    p_import.add_argument('path', nargs=1)

    add('assets', _assets, 'Print the path of the assets folder.', json_flag=False)

    p_last = add('last-note', _last_note, 'Show or set the last opened note.')
    p_last.add_argument('id', nargs='?')
    add_folder_option(p_last)
    p_last.add_argument('--clear', action='store_true', help='Forget the last opened note.')

    p_shortcut = add('shortcut', _shortcut, 'Show or set the global shortcut.', json_flag=False)
    p_shortcut.add_argument('key', nargs='?')

    p_opacity = add('opacity', _opacity, 'Show or set the window opacity (0.3 to 1.0).')
    p_opacity.add_argument('value', nargs='?', type=float)

    return parser


def main(args=None) -> int:
    """Runs the tool and returns its exit code.

    args may be an array of string command-line arguments; if absent,
    the process's arguments are used.
    """
    parser = argparser()
    args = parser.parse_args(args)
    if not args.func:
        parser.print_help()
        return 1
    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.WARNING,
                        format='%(levelname)s %(name)s: %(message)s')
    try:
        with Mded.for_user() as app:
            return args.func(args, app)
    except Error as e:
        if args.json:
            print(json.dumps(ApiResult.failure(e.message).as_json()))
        else:
            print(f'Error: {e.message}', file=sys.stderr)
        return 1
