import shutil

from shutterbox.schemas.reports import CheckStatus
from shutterbox.services.hasher import hash_file
from shutterbox.services.importer import import_paths
from shutterbox.services.reconcile import check_file, check_paths


def imported(ctx, make_jpeg, name="a.jpg", **kw):
    """Import a copy and hand back the untouched original for checking."""
    src = make_jpeg(name, **kw)
    [r] = import_paths(ctx, [src], move=False).items
    return src, r


def forget_catalog(ctx):
    with ctx.catalog.conn:
        ctx.catalog.conn.execute("DELETE FROM photos")


def test_consistent_file_is_ok(ctx, make_jpeg):
    src, _ = imported(ctx, make_jpeg)
    r = check_file(ctx, src)
    assert r.status == CheckStatus.OK
    assert (r.in_catalog, r.in_masters, r.in_journal) == (True, True, True)
    assert r.fid == "000001"

def test_unknown_file_is_new(ctx, make_jpeg):
    r = check_file(ctx, make_jpeg("fresh.jpg"))
    assert r.status == CheckStatus.NEW
    assert (r.in_catalog, r.in_masters, r.in_journal) == (False, False, False)

def test_recoverable_without_recover_changes_nothing(ctx, make_jpeg):
    src, _ = imported(ctx, make_jpeg, original="2020:05:01 10:00:00", orientation=8)
    forget_catalog(ctx)

    r = check_file(ctx, src)
    assert r.status == CheckStatus.RECOVERABLE
    assert r.fid == "000001"
    assert (r.in_catalog, r.in_masters, r.in_journal) == (False, True, True)
    assert ctx.catalog.count() == 0

def test_recover_restores_the_journaled_id(ctx, make_jpeg):
    imported(ctx, make_jpeg, "x.jpg")
    src, before = imported(ctx, make_jpeg, original="2020:05:01 10:00:00", orientation=8)
    assert before.fid == "000002"
    forget_catalog(ctx)

    r = check_file(ctx, src, recover=True)
    assert r.status == CheckStatus.RECOVERED
    photo = ctx.catalog.find_by_fingerprint(hash_file(src))
    assert (photo.id, photo.taken, photo.rotation) == (2, "20200501T100000", -90)
    # and the next import continues after the journal
    [nxt] = import_paths(ctx, [make_jpeg("next.jpg")], move=False).items
    assert nxt.fid == "000003"

def test_unjournaled_row_is_repaired_only_on_request(ctx, make_jpeg):
    src, _ = imported(ctx, make_jpeg)
    ctx.master_journal.path.unlink()

    assert check_file(ctx, src).status == CheckStatus.UNJOURNALED
    assert not ctx.master_journal.path.exists()

    assert check_file(ctx, src, recover=True).status == CheckStatus.REPAIRED
    assert ctx.master_journal.load() == {1: hash_file(src)}
    assert check_file(ctx, src).status == CheckStatus.OK

def test_missing_master_is_reported_not_repaired(ctx, make_jpeg):
    src, r = imported(ctx, make_jpeg)
    (ctx.root / r.master_path).unlink()
    res = check_file(ctx, src, recover=True)
    assert res.status == CheckStatus.MISSING_MASTER
    assert ctx.catalog.count() == 1

def test_journal_disagreeing_with_catalog_is_inconsistent(ctx, make_jpeg):
    src, r = imported(ctx, make_jpeg)
    ctx.master_journal.append(9, r.fingerprint)
    res = check_file(ctx, src)
    assert res.status == CheckStatus.INCONSISTENT
    assert "000009" in res.message

def test_orphan_master(ctx, make_jpeg, tmp_path):
    src = make_jpeg("a.jpg")
    stray = tmp_path / "stray.jpg"
    shutil.copy(src, stray)
    ctx.masters.put(hash_file(src), stray)
    assert check_file(ctx, src).status == CheckStatus.ORPHAN_MASTER

def test_lost_master(ctx, make_jpeg):
    src, r = imported(ctx, make_jpeg)
    forget_catalog(ctx)
    (ctx.root / r.master_path).unlink()
    res = check_file(ctx, src, recover=True)
    assert res.status == CheckStatus.LOST
    assert ctx.catalog.count() == 0

def test_check_paths_summary_and_failure_flag(ctx, make_jpeg, tmp_path):
    ok_src, _ = imported(ctx, make_jpeg, "ok.jpg")
    new_src = make_jpeg("new.jpg")
    empty = tmp_path / "empty"
    empty.mkdir()

    report = check_paths(ctx, [ok_src, new_src, empty, tmp_path / "missing.jpg"])
    assert [r.status for r in report.items] == [CheckStatus.OK, CheckStatus.NEW, CheckStatus.ERROR]
    assert report.counts == {"error": 1, "new": 1, "ok": 1}
    assert report.failed
