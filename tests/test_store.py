import base64
import json
import os
from pathlib import Path
import re
import threading
from freezegun import freeze_time
import pytest
from mded.errors import ConflictError, DecodeError, NotFoundError, StorageError, ValidationError
from mded.models import FolderInfo
from mded.settings import ConfigStore
from mded.store import DEFAULT_NOTE_CONTENT, DocumentStore, extract_title, is_root_folder

PNG_BYTES = b'\x89PNG\r\n\x1a\n\x00\x00\x00\rIHDR'


@pytest.fixture
def store(fs):
    store = DocumentStore('/data')
    store.ensure_directories()
    return store


def test_ensure_directories(fs):
    store = DocumentStore('/data')
    store.ensure_directories()
    assert Path('/data/notes').is_dir()
    assert Path('/data/assets').is_dir()
    store.ensure_directories()


def test_is_root_folder():
    assert is_root_folder(None)
    assert is_root_folder('')
    assert is_root_folder('All Notes')
    assert not is_root_folder('Work')
    assert not is_root_folder('all notes')


def test_extract_title():
    assert extract_title('# Hello\nbody') == 'Hello'
    assert extract_title('\n\n  ## Sub heading  \n\ntext') == 'Sub heading'
    assert extract_title('plain first line\nsecond') == 'plain first line'
    assert extract_title('') is None
    assert extract_title('\n   \n') is None
    assert extract_title('#\n') is None


def test_extract_title_yaml():
    assert extract_title('---\ntitle: From Meta\n---\n# Heading\n') == 'From Meta'
    assert extract_title('---\nauthor: someone\n---\n# Heading\n') == 'Heading'
    assert extract_title('---\ntitle: Dots\n...\nbody') == 'Dots'


def test_list_folders(store):
    assert store.list_folders() == [FolderInfo('All Notes', '')]
    store.create_folder('Work')
    store.create_folder('Personal')
    Path('/data/notes/stray.md').write_text('not a folder')
    folders = store.list_folders()
    assert folders[0] == FolderInfo('All Notes', '')
    assert sorted(folders[1:], key=lambda f: f.name) == [FolderInfo('Personal', 'Personal'),
                                                         FolderInfo('Work', 'Work')]


def test_create_folder(store):
    store.create_folder('My Folder')
    assert Path('/data/notes/My Folder').is_dir()
    with pytest.raises(ConflictError, match="Folder 'My Folder' already exists"):
        store.create_folder('My Folder')


def test_create_folder_invalid(store):
    with pytest.raises(ValidationError, match='empty or whitespace'):
        store.create_folder('')
    with pytest.raises(ValidationError, match='empty or whitespace'):
        store.create_folder('   ')
    with pytest.raises(ValidationError, match="'All Notes' is a protected folder name"):
        store.create_folder('All Notes')
    with pytest.raises(ValidationError, match="'Trash' is a protected folder name"):
        store.create_folder('Trash')
    with pytest.raises(ValidationError, match='traversal'):
        store.create_folder('../outside')
    with pytest.raises(ValidationError, match='separator'):
        store.create_folder('a/b')
    assert not Path('/data/outside').exists()


def test_delete_folder(store):
    store.create_folder('Work')
    store.save_note('one', 'first', 'Work')
    store.save_note('two', 'second', 'Work')
    store.delete_folder('Work')
    assert not Path('/data/notes/Work').exists()
    with pytest.raises(NotFoundError):
        store.list_notes('Work')
    with pytest.raises(NotFoundError, match="Folder 'Work' does not exist"):
        store.delete_folder('Work')


def test_delete_folder_invalid(store):
    with pytest.raises(ValidationError, match="Cannot delete protected folder 'Trash'"):
        store.delete_folder('Trash')
    with pytest.raises(ValidationError):
        store.delete_folder('..')
    store.save_note('loose', 'x')
    with pytest.raises(NotFoundError):
        store.delete_folder('loose.md')
    assert Path('/data/notes/loose.md').exists()


def test_rename_folder(store):
    store.create_folder('Old')
    store.save_note('n', 'content', 'Old')
    store.rename_folder('Old', 'New')
    assert not Path('/data/notes/Old').exists()
    assert store.read_note('n', 'New') == 'content'


def test_rename_folder_errors(store):
    store.create_folder('A')
    store.create_folder('B')
    with pytest.raises(ConflictError, match="Folder 'B' already exists"):
        store.rename_folder('A', 'B')
    with pytest.raises(NotFoundError, match="Folder 'C' does not exist"):
        store.rename_folder('C', 'D')
    with pytest.raises(ValidationError, match="Cannot rename protected folder 'All Notes'"):
        store.rename_folder('All Notes', 'X')
    with pytest.raises(ValidationError, match="Cannot rename to protected name 'Trash'"):
        store.rename_folder('A', 'Trash')
    with pytest.raises(ValidationError):
        store.rename_folder('A', '../A')
    assert Path('/data/notes/A').is_dir()


def test_notes_root_is_not_a_folder(store):
    store.save_note('root-note', 'keep me')
    store.save_note('w', 'work', 'Work')
    with pytest.raises(ValidationError, match="'.' is not a valid folder name"):
        store.delete_folder('.')
    with pytest.raises(ValidationError, match="'.' is not a valid folder name"):
        store.rename_folder('.', 'Elsewhere')
    with pytest.raises(ValidationError, match="'.' is not a valid folder name"):
        store.rename_folder('Work', '.')
    with pytest.raises(ValidationError, match="'.' is not a valid folder name"):
        store.create_folder('.')
    with pytest.raises(ValidationError):
        store.list_notes('.')
    with pytest.raises(ValidationError):
        store.save_note('n', 'x', '.')
    assert store.read_note('root-note') == 'keep me'
    assert store.read_note('w', 'Work') == 'work'
    assert not Path('/data/notes/Elsewhere').exists()


def test_save_and_read_note(store):
    for content in ['', 'one line', '# Title\n\nbody\n', 'windows\r\nline endings\r\n', 'unicode é中\n']:
        store.save_note('note', content)
        assert store.read_note('note') == content
    store.save_note('note', 'in root', '')
    assert store.read_note('note', 'All Notes') == 'in root'
    assert store.read_note('note', None) == 'in root'


def test_save_note_creates_folder(store):
    store.save_note('n', 'hello', 'New Folder')
    assert Path('/data/notes/New Folder/n.md').read_text() == 'hello'


def test_save_note_leaves_no_temp_files(store):
    store.save_note('n', 'one')
    store.save_note('n', 'two')
    assert os.listdir('/data/notes') == ['n.md']


def test_note_ids_validated(store):
    with pytest.raises(ValidationError):
        store.save_note('../escape', 'x')
    with pytest.raises(ValidationError):
        store.save_note('a/b', 'x')
    with pytest.raises(ValidationError):
        store.read_note('n', '../..')
    with pytest.raises(ValidationError, match='Note id cannot be empty'):
        store.save_note('', 'x')
    with pytest.raises(ValidationError, match='Note id cannot be empty'):
        store.read_note('  ')
    assert not Path('/data/escape.md').exists()


def test_read_note_missing(store):
    with pytest.raises(NotFoundError, match="Note 'nope' does not exist"):
        store.read_note('nope')


def test_create_note(store):
    note_id, path = store.create_note()
    assert re.fullmatch(r'note-[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}', note_id)
    assert path == f'/data/notes/{note_id}.md'
    assert store.read_note(note_id) == DEFAULT_NOTE_CONTENT

    other_id, other_path = store.create_note('Work')
    assert other_id != note_id
    assert other_path == f'/data/notes/Work/{other_id}.md'
    assert Path(other_path).read_text() == '# New Note\n\n'


def test_create_note_invalid_folder(store):
    with pytest.raises(ValidationError):
        store.create_note('..')


def test_list_notes(store):
    store.save_note('root-note', '# Root Title\n')
    store.save_note('work-note', 'Work stuff', 'Work')
    store.save_note('untitled', '')
    Path('/data/notes/Work/image.png').write_bytes(b'x')
    Path('/data/notes/Work/sub.md').mkdir()
    os.utime('/data/notes/root-note.md', (1000, 1000))
    os.utime('/data/notes/Work/work-note.md', (3000, 3000))
    os.utime('/data/notes/untitled.md', (2000, 2000))

    notes = store.list_notes()
    assert [(n.id, n.title, n.folder, n.pinned) for n in notes] == [
        ('work-note', 'Work stuff', 'Work', False),
        ('untitled', 'untitled', '', False),
        ('root-note', 'Root Title', '', False),
    ]
    assert notes[0].modified.timestamp() == 3000

    assert [n.id for n in store.list_notes('All Notes')] == ['work-note', 'untitled', 'root-note']
    assert [n.id for n in store.list_notes('Work')] == ['work-note']


def test_list_notes_pinned_first(store):
    for i, note_id in enumerate(['a', 'b', 'c', 'd']):
        store.save_note(note_id, note_id)
        os.utime(f'/data/notes/{note_id}.md', (1000 + i, 1000 + i))
    store.toggle_pin_note('a')
    store.toggle_pin_note('c')
    notes = store.list_notes('')
    assert [(n.id, n.pinned) for n in notes] == [('c', True), ('a', True), ('d', False), ('b', False)]


def test_list_notes_skips_note_deleted_during_listing(store):
    store.save_note('kept', 'still here')
    store.save_note('gone', 'about to go')
    original = store._note_info

    def delete_before_stat(path, folder, pinned_notes):
        if path.name == 'gone.md':
            path.unlink()
        return original(path, folder, pinned_notes)

    store._note_info = delete_before_stat
    assert [n.id for n in store.list_notes()] == ['kept']


def test_list_notes_missing_folder(store):
    with pytest.raises(NotFoundError, match="Folder 'Nope' does not exist"):
        store.list_notes('Nope')


def test_list_notes_ignores_unparsable_config(store):
    store.save_note('n', 'x')
    Path('/data/config.json').write_text('{broken')
    assert [(n.id, n.pinned) for n in store.list_notes()] == [('n', False)]


def test_delete_note(store):
    store.save_note('n', 'x', 'Work')
    store.delete_note('n', 'Work')
    assert not Path('/data/notes/Work/n.md').exists()
    with pytest.raises(NotFoundError):
        store.delete_note('n', 'Work')


def test_rename_note(store):
    store.save_note('old', 'content', 'Work')
    assert store.rename_note('old', 'new', 'Work') == 'new'
    assert store.read_note('new', 'Work') == 'content'
    with pytest.raises(NotFoundError):
        store.read_note('old', 'Work')


def test_rename_note_errors(store):
    store.save_note('a', 'A')
    store.save_note('b', 'B')
    with pytest.raises(ConflictError, match="Note 'b' already exists"):
        store.rename_note('a', 'b')
    with pytest.raises(NotFoundError):
        store.rename_note('c', 'd')
    with pytest.raises(ValidationError):
        store.rename_note('a', '../a')
    assert store.read_note('a') == 'A'
    assert store.read_note('b') == 'B'


def test_move_note(store):
    store.save_note('n', 'content')
    store.move_note('n', '', 'Archive')
    assert Path('/data/notes/Archive').is_dir()
    assert store.read_note('n', 'Archive') == 'content'
    with pytest.raises(NotFoundError):
        store.read_note('n')

    store.move_note('n', 'Archive', 'All Notes')
    assert store.read_note('n') == 'content'


def test_move_note_errors(store):
    store.save_note('n', 'root')
    store.save_note('n', 'work', 'Work')
    with pytest.raises(ConflictError, match="Note 'n' already exists in folder 'Work'"):
        store.move_note('n', '', 'Work')
    with pytest.raises(NotFoundError, match="Note 'x' does not exist in folder 'Work'"):
        store.move_note('x', 'Work', '')
    with pytest.raises(ValidationError):
        store.move_note('n', '', '../elsewhere')
    assert store.read_note('n') == 'root'
    assert store.read_note('n', 'Work') == 'work'


def test_toggle_pin_note(store):
    assert store.pinned_notes() == []
    assert store.toggle_pin_note('n1') is True
    assert store.toggle_pin_note('n2') is True
    assert store.pinned_notes() == ['n1', 'n2']
    assert store.toggle_pin_note('n1') is False
    assert store.pinned_notes() == ['n2']
    assert store.toggle_pin_note('n1') is True
    assert store.pinned_notes() == ['n2', 'n1']


def test_toggle_pin_note_twice_restores_membership(store):
    store.toggle_pin_note('n')
    store.toggle_pin_note('n')
    assert 'n' not in store.pinned_notes()


def test_toggle_pin_note_preserves_other_settings(store):
    Path('/data/config.json').write_text('{"global_shortcut": "Alt+X", "window_opacity": 0.5}')
    store.toggle_pin_note('n')
    config = ConfigStore.load_from_file('/data/config.json')
    assert config.global_shortcut == 'Alt+X'
    assert config.window_opacity == 0.5
    assert config.pinned_notes == ['n']


def test_toggle_pin_note_replaces_unparsable_config(store):
    Path('/data/config.json').write_text('not json')
    assert store.toggle_pin_note('n') is True
    assert json.loads(Path('/data/config.json').read_text())['pinned_notes'] == ['n']


def test_toggle_pin_note_invalid(store):
    with pytest.raises(ValidationError):
        store.toggle_pin_note('../n')
    assert not Path('/data/config.json').exists()


def test_toggle_pin_note_concurrent_calls_can_lose_an_update(tmp_path):
    store = DocumentStore(tmp_path)
    store.ensure_directories()
    original = store._pinned_notes_for_listing
    barrier = threading.Barrier(2)

    def read_together():
        result = original()
        barrier.wait(5)
        return result

    store._pinned_notes_for_listing = read_together
    threads = [threading.Thread(target=store.toggle_pin_note, args=(note_id,)) for note_id in ('a', 'b')]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(5)
    pinned = DocumentStore(tmp_path).pinned_notes()
    assert pinned in (['a'], ['b'])


def test_note_order(store):
    assert store.get_note_order() == {}
    order = {'': ['b', 'a'], 'Work': ['x', 'missing-note']}
    store.save_note_order(order)
    assert store.get_note_order() == order
    assert json.loads(Path('/data/note-order.json').read_text()) == order
    store.save_note_order({})
    assert store.get_note_order() == {}


def test_note_order_unparsable(store):
    Path('/data/note-order.json').write_text('[oops')
    with pytest.raises(StorageError, match='Failed to parse note order file'):
        store.get_note_order()


def test_note_order_not_an_object(store):
    for content in ['["a", "b"]', '"order"', '3', 'null']:
        Path('/data/note-order.json').write_text(content)
        with pytest.raises(StorageError, match='does not contain a JSON object'):
            store.get_note_order()


def test_get_assets_path(store):
    assert store.get_assets_path() == '/data/assets'


@freeze_time('2024-01-02 03:04:05.678')
def test_save_screenshot(store):
    encoded = base64.b64encode(PNG_BYTES).decode('ascii')
    image_id, path = store.save_screenshot(encoded)
    assert image_id == 'screenshot-20240102030405678'
    assert path == '/data/assets/screenshot-20240102030405678.png'
    assert Path(path).read_bytes() == PNG_BYTES

    image_id, path = store.save_screenshot('data:image/png;base64,' + encoded)
    assert image_id == 'screenshot-20240102030405679'
    assert Path(path).read_bytes() == PNG_BYTES


def test_save_screenshot_contents(store):
    for data in [b'\x00', bytes(range(256)), PNG_BYTES * 100]:
        _, path = store.save_screenshot(base64.b64encode(data).decode('ascii'))
        assert Path(path).read_bytes() == data


def test_save_screenshot_creates_assets_dir(fs):
    store = DocumentStore('/fresh')
    _, path = store.save_screenshot(base64.b64encode(PNG_BYTES).decode('ascii'))
    assert Path(path).parent == Path('/fresh/assets')


def test_save_screenshot_invalid(store):
    with pytest.raises(DecodeError, match='Failed to decode base64'):
        store.save_screenshot('not base64 at all!!')
    with pytest.raises(DecodeError, match='Failed to decode base64'):
        store.save_screenshot('data:image/png;base64,@@@@')
    with pytest.raises(DecodeError, match='empty'):
        store.save_screenshot('')
    with pytest.raises(DecodeError, match='empty'):
        store.save_screenshot('data:image/png;base64,')
    assert os.listdir('/data/assets') == []


def test_read_external_file(store, fs):
    fs.create_file('/elsewhere/doc.md', contents='# External\r\n')
    assert store.read_external_file('/elsewhere/doc.md') == ('# External\r\n', 'doc.md', '/elsewhere/doc.md')


def test_read_external_file_resolves_symlinks(store, fs):
    fs.create_file('/real/doc.md', contents='x')
    fs.create_symlink('/link.md', '/real/doc.md')
    assert store.read_external_file('/link.md') == ('x', 'link.md', '/real/doc.md')


def test_read_external_file_errors(store, fs):
    fs.create_file('/elsewhere/doc.txt', contents='x')
    fs.create_dir('/elsewhere/dir.md')
    with pytest.raises(ValidationError, match='File must have .md extension'):
        store.read_external_file('/elsewhere/doc.txt')
    with pytest.raises(ValidationError, match='File must have .md extension'):
        store.read_external_file('/elsewhere/doc.MD')
    with pytest.raises(NotFoundError, match='File does not exist'):
        store.read_external_file('/elsewhere/missing.md')
    with pytest.raises(ValidationError, match='Path is not a file'):
        store.read_external_file('/elsewhere/dir.md')
