import shutil
import stat
from datetime import datetime

import pytest
from PIL import Image

from shutterbox.core.context import ArchiveContext
from shutterbox.schemas.reports import ImportState, ImportStatus
from shutterbox.services import importer
from shutterbox.services.hasher import hash_file
from shutterbox.services.importer import import_file, import_paths
from shutterbox.services.metadata import MetadataReader


def test_end_to_end_single_file(ctx, make_jpeg):
    src = make_jpeg("IMG_0001.JPG", size=(4000, 3000), orientation=6, original="2020:05:01 10:00:00")
    fp = hash_file(src)

    report = import_paths(ctx, [src])
    [r] = report.items
    assert r.status == ImportStatus.IMPORTED
    assert r.state == ImportState.DONE
    assert r.fid == "000001"
    assert r.taken == "20200501T100000"
    assert r.master_path == f"masters/{fp[:2]}/{fp}.jpg"
    assert r.preview_path == "preview/2020-05/01-000001.jpg"
    assert not report.failed

    photo = ctx.catalog.find_by_fingerprint(fp)
    assert (photo.id, photo.width, photo.height, photo.rotation) == (1, 4000, 3000, 90)

    master = ctx.root / r.master_path
    assert stat.S_IMODE(master.stat().st_mode) == 0o444
    assert hash_file(master) == fp       # no exiftool: master bytes untouched
    assert not src.exists()              # moved by default

    with Image.open(ctx.root / r.preview_path) as im:
        assert im.size == (120, 160)

    assert ctx.master_journal.path.read_text() == f"000001 {fp}\n"
    assert ctx.preview_journal.path.read_text() == "000001 preview/2020-05/01-000001.jpg\n"
    day, fid, logged_fp, source = ctx.import_log.path.read_text().rstrip("\n").split(" ", 3)
    assert (fid, logged_fp, source) == ("000001", fp, str(src.resolve()))
    assert day == datetime.now().strftime("%Y%m%d")

def test_reimport_is_a_no_op(ctx, make_jpeg, tmp_path):
    src = make_jpeg("a.jpg")
    twin = tmp_path / "elsewhere" / "copy-of-a.jpg"
    twin.parent.mkdir()
    shutil.copy(src, twin)

    assert import_paths(ctx, [src]).items[0].status == ImportStatus.IMPORTED
    journals = {k: p.read_text() for k, p in ctx.settings.journal_paths.items()}

    [r] = import_paths(ctx, [twin]).items
    assert r.status == ImportStatus.DUPLICATE
    assert r.fid == "000001"
    assert twin.exists()
    assert ctx.catalog.count() == 1
    assert {k: p.read_text() for k, p in ctx.settings.journal_paths.items()} == journals

def test_identical_files_in_one_batch(ctx, make_jpeg):
    a = make_jpeg("a.jpg")
    shutil.copy(a, a.with_name("b.jpg"))
    report = import_paths(ctx, [a.parent], move=False)
    assert [r.status for r in report.items] == [ImportStatus.IMPORTED, ImportStatus.DUPLICATE]
    assert report.summary() == "duplicate=1, imported=1"

def test_copy_mode_keeps_sources(ctx, make_jpeg):
    src = make_jpeg("a.jpg")
    assert import_paths(ctx, [src], move=False).items[0].status == ImportStatus.IMPORTED
    assert src.exists()

def test_keep_source_setting_is_the_default_mode(tmp_path, settings, make_jpeg):
    settings.keep_source = True
    src = make_jpeg("a.jpg")
    with ArchiveContext(settings) as c:
        import_paths(c, [src])
    assert src.exists()

def test_taken_falls_back_to_file_mtime(ctx, make_jpeg):
    when = datetime(2021, 6, 7, 8, 9, 10)
    src = make_jpeg("a.jpg", mtime=when.timestamp())
    [r] = import_paths(ctx, [src]).items
    assert r.taken == "20210607T080910"
    assert r.preview_path == "preview/2021-06/07-000001.jpg"

def test_unusable_dates_give_the_sentinel(ctx, make_jpeg):
    src = make_jpeg("a.jpg", original="0000:00:00 00:00:00", mtime=3600)
    [r] = import_paths(ctx, [src]).items
    assert r.taken == "19700101T000000"
    assert r.preview_path == "preview/1970-01/01-000001.jpg"

def test_dry_run_writes_nothing(ctx, make_jpeg):
    src = make_jpeg("a.jpg", original="2020:05:01 10:00:00")
    [r] = import_paths(ctx, [src], dry_run=True).items
    assert r.status == ImportStatus.PLANNED
    assert r.taken == "20200501T100000"
    assert src.exists()
    assert ctx.catalog.count() == 0
    assert not ctx.settings.masters_dir.exists()
    assert not ctx.master_journal.path.exists()

def test_directory_walk_filters_junk_and_extensions(ctx, make_jpeg, tmp_path):
    card = tmp_path / "incoming"
    make_jpeg("DCIM/100/IMG_0001.JPG")
    make_jpeg("DCIM/100/IMG_0002.jpeg")
    make_jpeg("DCIM/101/IMG_0003.jpg")
    (card / "DCIM" / "100" / "._IMG_0001.JPG").write_bytes(b"\x00\x05\x16\x07")
    (card / "DCIM" / ".DS_Store").write_bytes(b"junk")
    (card / "DCIM" / "notes.txt").write_text("hi")
    make_jpeg(".Trashes/deleted.jpg")

    report = import_paths(ctx, [card])
    assert [r.status for r in report.items] == [ImportStatus.IMPORTED] * 3
    assert [r.fid for r in report.items] == ["000001", "000002", "000003"]
    assert [r.source.rsplit("/", 1)[-1] for r in report.items] == ["IMG_0001.JPG", "IMG_0002.jpeg", "IMG_0003.jpg"]

def test_bad_inputs_are_reported_not_raised(ctx, make_jpeg, tmp_path):
    text = tmp_path / "notes.txt"
    text.write_text("hi")
    empty = tmp_path / "empty"
    empty.mkdir()
    good = make_jpeg("a.jpg")

    report = import_paths(ctx, [text, tmp_path / "missing.jpg", empty, good])
    assert [r.status for r in report.items] == [
        ImportStatus.ERROR, ImportStatus.ERROR, ImportStatus.EMPTY, ImportStatus.IMPORTED,
    ]
    assert report.items[0].message == "unsupported extension"
    assert report.failed

def test_directory_without_recursion_is_rejected(ctx, make_jpeg):
    src = make_jpeg("a.jpg")
    [r] = import_paths(ctx, [src.parent], recursive=False).items
    assert r.status == ImportStatus.ERROR
    assert "recursive" in r.message
    assert src.exists()

def test_undecodable_file_leaves_no_trace(ctx, tmp_path):
    bad = tmp_path / "broken.jpg"
    bad.write_bytes(b"not a jpeg at all")
    [r] = import_paths(ctx, [bad]).items
    assert r.status == ImportStatus.ERROR
    assert r.state == ImportState.DEDUP_CHECKED
    assert bad.exists()
    assert not ctx.masters.exists(r.fingerprint)
    assert ctx.catalog.count() == 0

def test_orphan_master_is_adopted(ctx, make_jpeg, tmp_path):
    src = make_jpeg("a.jpg")
    fp = hash_file(src)
    stray = tmp_path / "stray.jpg"
    shutil.copy(src, stray)
    ctx.masters.put(fp, stray)      # e.g. a crash between the move and the journal line

    [r] = import_paths(ctx, [src], move=False).items
    assert r.status == ImportStatus.IMPORTED
    assert r.fid == "000001"
    assert ctx.master_journal.load() == {1: fp}

def test_journaled_but_uncataloged_is_recoverable(ctx, make_jpeg):
    src = make_jpeg("a.jpg")
    import_paths(ctx, [src], move=False)
    with ctx.catalog.conn:
        ctx.catalog.conn.execute("DELETE FROM photos")

    [r] = import_paths(ctx, [src], move=False).items
    assert r.status == ImportStatus.RECOVERABLE
    assert r.fid == "000001"
    assert ctx.catalog.count() == 0
    assert len(ctx.master_journal.path.read_text().splitlines()) == 1

def test_lost_catalog_never_reuses_ids(settings, make_jpeg):
    with ArchiveContext(settings) as c:
        import_paths(c, [make_jpeg("a.jpg")])
    for p in settings.db_path.parent.glob(settings.db_path.name + "*"):
        p.unlink()

    with ArchiveContext(settings) as c:
        [r] = import_paths(c, [make_jpeg("b.jpg")]).items
    assert r.fid == "000002"

def test_failed_insert_still_journals_the_master(ctx, make_jpeg, monkeypatch):
    import sqlite3
    from shutterbox.services.reconcile import check_file

    src = make_jpeg("a.jpg", original="2020:05:01 10:00:00")
    fp = hash_file(src)

    def locked(*a, **kw):
        raise sqlite3.OperationalError("database is locked")
    with monkeypatch.context() as m:
        m.setattr(ctx.catalog, "insert", locked)
        [r] = import_paths(ctx, [src], move=False).items

    assert r.status == ImportStatus.ERROR
    assert r.state == ImportState.JOURNALED
    assert ctx.masters.exists(fp)
    assert ctx.master_journal.reverse() == {fp: 1}
    assert ctx.catalog.count() == 0

    # the journal line is enough to bring the row back under the same id
    [again] = import_paths(ctx, [src], move=False).items
    assert again.status == ImportStatus.RECOVERABLE
    assert check_file(ctx, src, recover=True).fid == "000001"
    assert ctx.catalog.find_by_fingerprint(fp).id == 1

def test_preview_failure_keeps_the_import(ctx, make_jpeg, monkeypatch):
    def boom(*a, **kw):
        raise OSError("disk full")
    monkeypatch.setattr(importer, "ensure_preview", boom)

    [r] = import_paths(ctx, [make_jpeg("a.jpg")]).items
    assert r.status == ImportStatus.ERROR
    assert r.fid == "000001"
    assert "preview failed" in r.message
    assert ctx.catalog.count() == 1
    assert ctx.master_journal.load() == {1: r.fingerprint}

def test_unexpected_errors_stay_with_the_item(ctx, make_jpeg, monkeypatch):
    def boom(*a, **kw):
        raise KeyError("surprise")
    monkeypatch.setattr(importer, "hash_file", boom)

    report = import_paths(ctx, [make_jpeg("a.jpg"), make_jpeg("b.jpg")])
    assert [r.status for r in report.items] == [ImportStatus.ERROR, ImportStatus.ERROR]
    assert report.items[0].message.startswith("unexpected error")


class RewritingReader(MetadataReader):
    """Pillow reads, but pretends it can rewrite tags; records what it touched."""
    def __init__(self):
        super().__init__("pillow")
        self.reset = []

    @property
    def can_rewrite(self):
        return True

    def reset_orientation(self, p):
        self.reset.append((p, stat.S_IMODE(p.stat().st_mode)))


@pytest.mark.parametrize("orientation,expect_reset", [(6, True), (1, False), (None, False)])
def test_orientation_reset_runs_before_lock(settings, make_jpeg, orientation, expect_reset):
    reader = RewritingReader()
    src = make_jpeg("a.jpg", orientation=orientation)
    with ArchiveContext(settings, reader=reader) as c:
        [r] = import_paths(c, [src]).items
        master = c.root / r.master_path
    assert r.status == ImportStatus.IMPORTED
    if expect_reset:
        [(path, mode)] = reader.reset
        assert path == master
        assert mode & stat.S_IWUSR
    else:
        assert reader.reset == []

def test_import_file_builds_its_own_indexes(ctx, make_jpeg):
    src = make_jpeg("a.jpg")
    assert import_file(ctx, src, move=False).status == ImportStatus.IMPORTED
    r = import_file(ctx, src)
    assert r.status == ImportStatus.DUPLICATE
    assert r.state == ImportState.SKIPPED
