import json

from ipvpos.models import PaymentMethod, StockLocation, WarehouseStock


def test_system_init_is_idempotent(app, db_session):
    runner = app.test_cli_runner()

    first = runner.invoke(args=["system", "init", "--location", "Almacen"])
    second = runner.invoke(args=["system", "init", "--location", "Almacen"])

    assert first.exit_code == 0, first.output
    assert "Created stock location: Almacen" in first.output
    assert second.exit_code == 0, second.output
    assert "Using existing stock location: Almacen" in second.output
    assert db_session.query(StockLocation).count() == 1
    assert db_session.query(PaymentMethod).count() == 2


def test_ledger_audit_and_rebuild(app, db_session, location, product, purchase_into):
    runner = app.test_cli_runner()
    purchase_into(product, location, 5, 500)

    clean = runner.invoke(args=["ledger", "audit"])
    assert clean.exit_code == 0
    assert "PASS" in clean.output

    db_session.query(WarehouseStock).update({WarehouseStock.quantity: 1})
    db_session.commit()

    drift = runner.invoke(args=["ledger", "audit"])
    assert drift.exit_code == 1
    assert "1 balance(s) out of sync" in drift.output

    rebuilt = runner.invoke(args=["ledger", "rebuild", "--yes"])
    assert rebuilt.exit_code == 0
    assert "1 corrected" in rebuilt.output
    assert runner.invoke(args=["ledger", "audit"]).exit_code == 0


def test_shift_commands(app, db_session, user, location, product, purchase_into, sell):
    runner = app.test_cli_runner()

    no_shift = runner.invoke(args=["shifts", "close", "--location-id", str(location.id)])
    assert no_shift.exit_code == 1
    assert "No open shift" in no_shift.output

    purchase_into(product, location, 3, 500)
    sell(product, 1, 800)

    listed = runner.invoke(args=["shifts", "list", "--location-id", str(location.id)])
    assert listed.exit_code == 0
    assert "OPEN" in listed.output

    closed = runner.invoke(args=["shifts", "close", "--location-id", str(location.id)])
    assert closed.exit_code == 0, closed.output
    assert "1 END snapshots" in closed.output


def test_ipv_report_command(app, db_session, user, location, product, purchase_into, sell):
    runner = app.test_cli_runner()
    purchase_into(product, location, 10, 500)
    sell(product, 4, 800)

    table = runner.invoke(args=["reports", "ipv", "--location-id", str(location.id)])
    assert table.exit_code == 0, table.output
    assert "Refresco" in table.output
    assert "Profit 12.00" in table.output

    raw = runner.invoke(args=["reports", "ipv", "--location-id", str(location.id), "--json"])
    report = json.loads(raw.output)
    assert report["rows"][0]["remaining"] == 6

    bad = runner.invoke(args=["reports", "ipv", "--location-id", str(location.id), "--date", "yesterday"])
    assert bad.exit_code == 1
    assert "FAIL" in bad.output
