from datetime import datetime
from decimal import Decimal

import pytest

from packages.statement_ingest import (
    EmptyInput,
    MalformedInput,
    NoValidRows,
    ParseOptions,
    SchemaInferenceError,
    UnsupportedFormat,
    parse_statement,
)
from packages.statement_ingest.pipeline import ProgressTracker, StatementParser


def _csv(text: str, encoding: str = "utf-8") -> bytes:
    return text.encode(encoding)


def test_basic_statement():
    content = _csv(
        "Date,Category,Amount,Account\n"
        "01.03.2024,Groceries,-45.90,Cash\n"
        "02.03.2024,Salary,2000,Bank\n"
    )
    result = parse_statement(content, "statement.csv")

    assert len(result) == 2
    groceries, salary = result

    assert groceries.date == "2024-03-01"
    assert groceries.amount == Decimal("-45.90")
    assert groceries.type == "expense"
    assert groceries.category == "Groceries"
    assert groceries.account == "Cash"

    assert salary.date == "2024-03-02"
    assert salary.amount == Decimal("2000")
    assert salary.type == "income"
    assert salary.category == "Salary"

    records = result.to_records()
    assert records[0]["amount"] == -45.9
    assert records[0]["type"] == "expense"
    assert records[1]["amount"] == 2000.0
    assert records[1]["index"] == 0


def test_types_follow_sign_and_ids_are_unique():
    content = _csv(
        "Date,Description,Debit,Credit\n"
        "2024-01-01,Rent,1200.00,\n"
        "2024-01-01,Salary,,3000.00\n"
        "2024-01-02,Coffee,3.50,\n"
        "2024-01-02,Coffee,3.50,\n"
        "2024-01-03,Nothing,0.00,\n"
    )
    result = parse_statement(content, "statement.csv")

    assert len(result) == 4
    for t in result:
        assert t.amount != 0
        assert (t.type == "income") == (t.amount > 0)
        assert (t.type == "expense") == (t.amount < 0)
    assert len({t.id for t in result}) == len(result)
    assert result.skipped_rows == 1


def test_file_order_is_preserved():
    content = _csv(
        "Date,Amount,Note\n"
        "2024-03-05,-1,e\n"
        "2024-03-01,-2,a\n"
        "bad,-3,x\n"
        "2024-03-03,-4,c\n"
    )
    result = parse_statement(content, "statement.csv")

    assert [t.note for t in result] == ["e", "a", "c"]


def test_date_column_locked_day_first():
    content = _csv("Date,Amount\n13.01.2024,10\n05.02.2024,20\n")
    result = parse_statement(content, "statement.csv")

    assert [t.date for t in result] == ["2024-01-13", "2024-02-05"]


def test_date_column_locked_month_first():
    content = _csv("Date,Amount\n05/02/2024,10\n01/13/2024,20\n")
    result = parse_statement(content, "statement.csv")

    assert [t.date for t in result] == ["2024-05-02", "2024-01-13"]


def test_decimal_comma_locked_for_column():
    content = _csv("Date;Amount\n01.02.2024;1.234,56\n02.02.2024;987,65\n")
    result = parse_statement(content, "statement.csv")

    assert [t.amount for t in result] == [Decimal("1234.56"), Decimal("987.65")]


def test_debit_credit_merge():
    content = _csv(
        "Date,Description,Debit,Credit\n"
        "2024-01-05,Rent,500,\n"
        "2024-01-06,Refund,,500\n"
    )
    result = parse_statement(content, "statement.csv")

    assert [t.amount for t in result] == [Decimal("-500"), Decimal("500")]


def test_bad_row_is_skipped_not_fatal():
    lines = ["Date,Amount,Note"]
    for day in range(1, 11):
        date = "not a date" if day == 4 else f"2024-01-{day:02d}"
        lines.append(f"{date},-{day}.00,row {day}")
    result = parse_statement(_csv("\n".join(lines)), "statement.csv")

    assert len(result) == 9
    assert result.skipped_rows == 1
    assert "row 4" not in [t.note for t in result]


def test_every_row_rejected_is_no_valid_rows():
    content = _csv("Date,Amount\n2024-01-01,abc\n2024-01-02,xyz\n")
    with pytest.raises(NoValidRows) as exc_info:
        parse_statement(content, "statement.csv")
    assert exc_info.value.kind == "no_valid_rows"


def test_title_row_above_header():
    content = _csv(
        "Account statement\n"
        "Date,Description,Amount\n"
        "2024-01-03,Coffee,-3.50\n"
        "2024-01-04,Refund,12.00\n"
    )
    result = parse_statement(content, "statement.csv")

    assert result.header_row == 1
    assert [t.note for t in result] == ["Coffee", "Refund"]


def test_semicolon_cp1251_statement():
    content = _csv(
        "Дата;Сумма;Категория;Описание\n"
        "13.01.2024;-1 234,50;Продукты;Магазин у дома\n"
        "14.01.2024;50 000,00;Зарплата;\n",
        encoding="cp1251",
    )
    result = parse_statement(content, "выписка.csv")

    assert len(result) == 2
    assert result[0].date == "2024-01-13"
    assert result[0].amount == Decimal("-1234.50")
    assert result[0].category == "Продукты"
    assert result[0].note == "Магазин у дома"
    assert result[1].amount == Decimal("50000.00")
    assert result[1].note == ""


def test_xlsx_native_cells(make_xlsx):
    content = make_xlsx(
        {
            "Operations": [
                ["Date", "Description", "Amount"],
                [datetime(2024, 3, 1, 9, 30), "Coffee", -4.5],
                [datetime(2024, 3, 2), "Salary", 1500],
            ]
        }
    )
    result = parse_statement(content, "statement.xlsx")

    assert result.sheet_name == "Operations"
    assert [t.date for t in result] == ["2024-03-01", "2024-03-02"]
    assert [t.amount for t in result] == [Decimal("-4.5"), Decimal("1500")]


def test_xlsx_excel_serial_dates(make_xlsx):
    content = make_xlsx(
        {"Sheet1": [["Date", "Amount"], [45292, -10], [45293, 20]]}
    )
    result = parse_statement(content, "statement.xlsx")

    assert [t.date for t in result] == ["2024-01-01", "2024-01-02"]


def test_unsigned_amount_takes_sign_from_type_label():
    content = _csv(
        "Date,Type,Amount\n"
        "2024-01-01,Expense,100\n"
        "2024-01-02,Income,200\n"
    )
    result = parse_statement(content, "statement.csv")

    assert [t.amount for t in result] == [Decimal("-100"), Decimal("200")]
    assert result.conflicts == 0


def test_signed_amount_wins_over_type_label():
    content = _csv(
        "Date,Type,Amount\n"
        "2024-01-01,Income,-50\n"
        "2024-01-02,Expense,-20\n"
    )
    result = parse_statement(content, "statement.csv")

    assert [t.amount for t in result] == [Decimal("-50"), Decimal("-20")]
    assert [t.type for t in result] == ["expense", "expense"]
    assert result.conflicts == 1


def test_identical_rows_get_suffixed_ids():
    content = _csv(
        "Date,Amount,Note\n"
        "2024-01-01,-5,Coffee\n"
        "2024-01-01,-5,Coffee\n"
    )
    first, second = parse_statement(content, "statement.csv")

    assert second.id == f"{first.id}_1"
    assert "_" not in first.id
    assert (first.index, second.index) == (0, 1)


def test_reupload_gives_same_ids():
    content = _csv("Date,Amount,Note\n2024-01-01,-5,Coffee\n2024-01-02,-7,Lunch\n")

    first = [t.id for t in parse_statement(content, "a.csv")]
    second = [t.id for t in parse_statement(content, "b.csv")]

    assert first == second


@pytest.mark.parametrize(
    "content, filename, error",
    [
        (b"%PDF-1.4", "statement.pdf", UnsupportedFormat),
        (b"", "statement.csv", EmptyInput),
        (b"not a workbook at all", "statement.xlsx", MalformedInput),
        (b"Name,Comment\nfoo,bar\n", "statement.csv", SchemaInferenceError),
        (b"Date,Amount\n", "statement.csv", EmptyInput),
    ],
)
def test_error_kinds(content, filename, error):
    with pytest.raises(error):
        parse_statement(content, filename)


def test_money_manager_export():
    content = _csv(
        "Дата и время;Категория;Счет;Сумма в валюте учета;Валюта учета;"
        "Сумма в валюте счета;Валюта счета;Комментарий;Теги\n"
        "07.01.2026 14:33;Еда;Карта;-500;RUB;-500;RUB;Обед;еда, кафе\n"
        "08.01.2026 10:00;Транспорт;Карта;-250;RUB;-100;THB;Такси;\n"
    )
    result = parse_statement(content, "money.csv")

    lunch, taxi = result
    assert lunch.date == "2026-01-07"
    assert lunch.amount == Decimal("-500")
    assert lunch.currency == "RUB"
    assert lunch.original_amount is None
    assert lunch.original_currency is None
    assert lunch.tags == "еда, кафе"
    assert lunch.account == "Карта"

    assert taxi.amount == Decimal("-250")
    assert taxi.original_amount == Decimal("-100")
    assert taxi.original_currency == "THB"
    assert taxi.to_dict()["originalAmount"] == -100.0


def test_static_rates_and_unconverted_warning():
    content = _csv(
        "Date,Amount,Currency,Note\n"
        "2024-01-01,-100,THB,Dinner\n"
        "2024-01-02,-10,EUR,Taxi\n"
        "2024-01-03,-5,RUB,Bus\n"
    )
    options = ParseOptions(reporting_currency="RUB", rates={"THB": Decimal("2.5")})
    result = parse_statement(content, "statement.csv", options)

    dinner, taxi, bus = result
    assert dinner.amount == Decimal("-250.00")
    assert dinner.currency == "RUB"
    assert dinner.original_amount == Decimal("-100")
    assert dinner.original_currency == "THB"
    assert taxi.amount == Decimal("-10")
    assert taxi.currency == "EUR"
    assert bus.original_amount is None
    assert len(result.warnings) == 1
    assert "EUR" in result.warnings[0]


def test_money_manager_workbook_combines_direction_sheets(make_xlsx):
    content = make_xlsx(
        {
            "Summary": [["Total", 4630]],
            "Расходы": [
                ["Дата", "Сумма", "Категория"],
                ["01.03.2024", 100, "Еда"],
                ["02.03.2024", 50, "Транспорт"],
                ["03.03.2024", 20, "Еда"],
            ],
            "Доходы": [
                ["Дата", "Сумма", "Категория"],
                ["01.03.2024", 5000, "Зарплата"],
            ],
        }
    )
    result = parse_statement(content, "export.xlsx")

    assert result.sheet_names == ("Расходы", "Доходы")
    assert result.sheet_name == "Расходы"
    assert [t.amount for t in result] == [
        Decimal("-100"), Decimal("-50"), Decimal("-20"), Decimal("5000"),
    ]
    assert [t.type for t in result] == ["expense", "expense", "expense", "income"]
    # Same date across sheets: indexes continue, ids stay unique
    assert [(t.date, t.index) for t in result if t.date == "2024-03-01"] == [
        ("2024-03-01", 0),
        ("2024-03-01", 1),
    ]
    assert len({t.id for t in result}) == 4


def test_designated_sheet_overrides_direction_sheets(make_xlsx):
    content = make_xlsx(
        {
            "Расходы": [["Дата", "Сумма"], ["01.01.2024", 300]],
            "Доходы": [["Дата", "Сумма"], ["05.01.2024", 5000]],
        }
    )
    income = parse_statement(content, "export.xlsx", ParseOptions(sheet="Доходы"))

    assert income.sheet_names == ("Доходы",)
    assert [t.amount for t in income] == [Decimal("5000")]


def test_unreadable_direction_sheet_is_skipped_with_warning(make_xlsx):
    content = make_xlsx(
        {
            "Расходы": [["Дата", "Сумма"], ["01.01.2024", 300]],
            "Переводы": [["Комментарий"], ["moved to savings"]],
        }
    )
    result = parse_statement(content, "export.xlsx")

    assert [t.amount for t in result] == [Decimal("-300")]
    assert result.sheet_names == ("Расходы",)
    assert any("Переводы" in w for w in result.warnings)


def test_all_direction_sheets_unreadable_raises(make_xlsx):
    content = make_xlsx(
        {
            "Расходы": [["Комментарий"], ["a"]],
            "Доходы": [["Комментарий"], ["b"]],
        }
    )
    with pytest.raises(SchemaInferenceError):
        parse_statement(content, "export.xlsx")


def test_headerless_description_with_header_word_is_kept():
    content = _csv(
        "01.03.2024,Card payment,-45.90\n"
        "02.03.2024,Salary,2000\n"
        "03.03.2024,Coffee,-3.50\n"
    )
    result = parse_statement(content, "s.csv")

    assert result.header_row == -1
    assert result.skipped_rows == 0
    assert [(t.date, t.amount, t.note, t.account) for t in result] == [
        ("2024-03-01", Decimal("-45.90"), "Card payment", ""),
        ("2024-03-02", Decimal("2000"), "Salary", ""),
        ("2024-03-03", Decimal("-3.50"), "Coffee", ""),
    ]


def test_progress_callback_reaches_100():
    seen = []
    lines = ["Date,Amount"] + [f"2024-01-{d:02d},-{d}" for d in range(1, 21)]
    StatementParser(
        _csv("\n".join(lines)), "statement.csv", progress_callback=seen.append
    ).parse()

    assert seen == sorted(seen)
    assert seen[-1] == 100


def test_progress_tracker_without_rows():
    seen = []
    tracker = ProgressTracker(0, seen.append)
    tracker.update()
    tracker.finish()

    assert seen == [100]
