from datetime import date

from sqlalchemy import create_engine, select
from sqlalchemy.orm import sessionmaker

from cache import ReadThroughCache
from csv_utils import parse_amount, parse_csv, sanitize_csv_value
from database import Base
from models import Account, Category, CategoryKind, Movement, MovementKind
from services import CSVService


def make_session():
    engine = create_engine(
        "sqlite+pysqlite:///:memory:", connect_args={"check_same_thread": False}
    )
    Base.metadata.create_all(engine)
    SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    return SessionLocal()


def test_parse_amount_handles_thousands_and_sign() -> None:
    assert parse_amount("$1.234.567") == 1_234_567
    assert parse_amount("-15.000") == -15_000
    assert parse_amount("2.500,4") == 2_500


def test_parse_csv_semicolon_with_kind_column() -> None:
    content = (
        "Fecha;Descripcion;Monto;Tipo;Categoria\n"
        "01/03/2025;Sueldo;1.500.000;Ingreso;Salary\n"
        "02/03/2025;Supermercado;45.990;Gasto;Food\n"
    )

    rows, errors = parse_csv(content)

    assert errors == []
    assert [(r.kind, r.amount) for r in rows] == [
        (MovementKind.income, 1_500_000),
        (MovementKind.expense, 45_990),
    ]
    assert rows[0].date == date(2025, 3, 1)
    assert rows[1].category == "Food"


def test_parse_csv_sign_decides_kind_without_kind_column() -> None:
    content = "date,description,amount\n2025-03-01,Refund,300\n2025-03-02,Taxi,-4500\n"

    rows, errors = parse_csv(content)

    assert errors == []
    assert [r.kind for r in rows] == [MovementKind.income, MovementKind.expense]
    assert rows[1].amount == 4_500


def test_parse_csv_reports_bad_rows_and_missing_columns() -> None:
    rows, errors = parse_csv("date,amount\n2025-01-01,5\n")
    assert rows == []
    assert "description" in errors[0]

    rows, errors = parse_csv(
        "date,description,amount\n"
        "2025-13-01,Bad date,10\n"
        "2025-01-02,,10\n"
        "2025-01-03,Zero,0\n"
        "2025-01-04,Fine,-10\n"
    )
    assert len(rows) == 1
    assert [e.split(":")[0] for e in errors] == ["Row 2", "Row 3", "Row 4"]


def test_sanitize_csv_value_neutralizes_formulas() -> None:
    assert sanitize_csv_value("=SUM(A1)") == "\t=SUM(A1)"
    assert sanitize_csv_value("Lunch") == "Lunch"


def test_commit_imports_rows_and_updates_balance() -> None:
    session = make_session()
    cache = ReadThroughCache()
    account = Account(
        user_id=1, name="Main", bank="Bank", initial_balance=0, computed_balance=0
    )
    session.add_all(
        [account, Category(user_id=1, name="Food", kind=CategoryKind.expense)]
    )
    session.commit()
    content = (
        "date,description,amount,category\n"
        "2025-03-01,Salary,100000,Salary\n"
        "2025-03-02,Market,-25000,Fod\n"
        "2025-03-03,Cinema,-5000,\n"
    )

    result = CSVService(session, cache, user_id=1).commit(content, account.id)

    assert result.created == 3
    assert result.errors == []
    assert session.scalar(
        select(Account.computed_balance).where(Account.id == account.id)
    ) == 70_000
    names = set(session.scalars(select(Category.name)).all())
    assert names == {"Food", "Salary", "Uncategorized"}
    market = session.scalar(select(Movement).where(Movement.description == "Market"))
    assert market.category.name == "Food"
    assert market.origin_account_id == account.id
    assert market.reconciliation_month == "2025-03"


def test_ambiguous_category_is_reported_per_row() -> None:
    session = make_session()
    account = Account(
        user_id=1, name="Main", bank="Bank", initial_balance=0, computed_balance=0
    )
    session.add_all(
        [
            account,
            Category(user_id=1, name="Bus", kind=CategoryKind.expense),
            Category(user_id=1, name="Bar", kind=CategoryKind.expense),
        ]
    )
    session.commit()

    result = CSVService(session, ReadThroughCache(), user_id=1).commit(
        "date,description,amount,category\n2025-03-02,Night,-900,Bur\n", account.id
    )

    assert result.created == 0
    assert "ambiguous" in result.errors[0]


def test_export_lists_movements_oldest_first() -> None:
    session = make_session()
    cache = ReadThroughCache()
    account = Account(
        user_id=1, name="Main", bank="Bank", initial_balance=0, computed_balance=0
    )
    session.add(account)
    session.commit()
    service = CSVService(session, cache, user_id=1)
    service.commit(
        "date,description,amount\n2025-03-05,Later,-10\n2025-03-01,Earlier,-20\n",
        account.id,
    )

    lines = service.export().strip().splitlines()

    assert lines[0] == "Date,Type,Amount,Category,Description,Notes"
    assert lines[1].startswith("2025-03-01,expense,20,Uncategorized,Earlier")
    assert lines[2].startswith("2025-03-05,expense,10,Uncategorized,Later")


def test_preview_does_not_write() -> None:
    session = make_session()
    service = CSVService(session, ReadThroughCache(), user_id=1)

    rows, errors = service.preview("date,description,amount\n2025-03-01,Tea,-3\n")

    assert [r.description for r in rows] == ["Tea"]
    assert errors == []
    assert session.scalar(select(Movement.id)) is None


def test_reimporting_an_export_reports_transfer_rows() -> None:
    content = (
        "Date,Type,Amount,Category,Description,Notes\n"
        "2025-03-01,expense,20,Food,Lunch,\n"
        "2025-03-02,transfer,500,Food,To savings,\n"
        "2025-03-03,income,900,Salary,Pay,\n"
    )

    rows, errors = parse_csv(content)

    assert [(r.description, r.kind) for r in rows] == [
        ("Lunch", MovementKind.expense),
        ("Pay", MovementKind.income),
    ]
    assert errors == ["Row 3: Transfer rows are not imported"]
