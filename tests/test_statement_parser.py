import pytest

from pipeline.amount_normalizer import AmountNormalizer
from pipeline.bank_formats import BANK_OF_AMERICA, CAPITAL_ONE, CHASE, GENERIC, ING, WELLS_FARGO, FormatRegistry
from pipeline.errors import AMOUNT_OUT_OF_RANGE
from pipeline.statement_parser import MAX_DESCRIPTION_CHARS, StatementParser
from schemas.extraction import ParseHints
from schemas.statement import Direction
from conftest import SCANNED_LINES, STATEMENT_LINES


@pytest.fixture
def parser() -> StatementParser:
    return StatementParser()


def test_generic_lines_with_header(parser):
    result = parser.parse("\n".join(STATEMENT_LINES), ParseHints(year=2024, month=1))

    assert [c.description for c in result.candidates] == [
        "Coffee Shop",
        "Grocery Store",
        "Payroll Deposit",
        "Electric Utility",
    ]
    assert [c.position for c in result.candidates] == [0, 1, 2, 3]
    assert result.candidates[0].balance_text == "995.50"
    assert result.candidates[2].sign_hint == "+"
    assert result.header.account_number == "****4821"
    assert result.header.opening_balance == "1,000.00"
    assert result.header.closing_balance == "3,293.40"
    assert result.header.period.startswith("01/01/2024")
    assert result.format_name == "GENERIC"
    assert not result.low_confidence


def test_scanned_lines_keep_document_order(parser):
    result = parser.parse("\n".join(SCANNED_LINES))

    assert len(result.candidates) == 10
    assert [c.line_number for c in result.candidates] == list(range(10))
    assert result.candidates[-1].description == "Cinema"


def test_noise_and_totals_are_dropped(parser):
    text = "\n".join([
        "Page 1 of 2",
        "01/03/2024 Coffee Shop 4.50",
        "01/31/2024 Total fees 0.00",
        "Transactions continued on next page",
        "Subtotal 4.50",
    ])

    result = parser.parse(text)

    assert [c.description for c in result.candidates] == ["Coffee Shop"]


def test_wrapped_description_is_merged(parser):
    text = "\n".join([
        "01/03/2024 Card purchase 23.10",
        "AMAZON MKTPLACE SEATTLE WA",
        "01/04/2024 Coffee Shop 4.50",
    ])

    result = parser.parse(text)

    assert [c.description for c in result.candidates] == [
        "Card purchase AMAZON MKTPLACE SEATTLE WA",
        "Coffee Shop",
    ]


def test_description_is_capped(parser):
    result = parser.parse("01/03/2024 " + "X" * 300 + " 4.50")
    assert len(result.candidates[0].description) == MAX_DESCRIPTION_CHARS


def test_text_without_transactions_is_low_confidence(parser):
    result = parser.parse("Thank you for banking with us.\nNo activity this period.")

    assert result.candidates == []
    assert result.low_confidence


def test_empty_text_is_not_low_confidence(parser):
    assert not parser.parse("   \n").low_confidence


def test_bank_format_takes_precedence_over_generic(parser):
    line = "05-01-2024 Albert Heijn 45,60 Af"

    ing = parser.parse(line, ParseHints(bank_name="ING Bank"))
    generic = parser.parse(line)

    assert ing.candidates[0].pattern == "ING"
    assert ing.candidates[0].date_order == "dmy"
    assert ing.candidates[0].sign_hint == "-"
    # Without the bank hint the Af/Bij layout is not recognised at all
    assert generic.candidates == []


def test_capital_one_month_day_dates(parser):
    text = "Jan 5 Jan 6 WHOLE FOODS MARKET $54.20\nJan 9 Jan 9 ONLINE PAYMENT - $300.00"

    result = parser.parse(text, ParseHints(bank_name="Capital One"))

    assert [c.date_text for c in result.candidates] == ["Jan 5", "Jan 9"]
    assert result.candidates[0].sign_hint is None
    assert result.candidates[1].sign_hint == "+"
    assert result.format_name == "CAPITAL_ONE"


def test_bank_detected_from_header_selects_format(parser):
    text = "JPMorgan Chase Bank, N.A.\n01/15 Card Purchase Starbucks -5.75 1,204.25"

    result = parser.parse(text)

    assert result.header.bank_name == "Chase"
    assert result.candidates[0].pattern == "CHASE"
    assert result.candidates[0].amount_text == "-5.75"


def test_registry_orders_specific_before_generic():
    registry = FormatRegistry()

    assert registry.ordered_for("Chase") == [CHASE, GENERIC]
    assert registry.ordered_for("Bank of America") == [BANK_OF_AMERICA, GENERIC]
    assert registry.ordered_for("Wells Fargo Bank, N.A.") == [WELLS_FARGO, GENERIC]
    assert registry.ordered_for("capital one 360") == [CAPITAL_ONE, GENERIC]
    assert registry.ordered_for("ING") == [ING, GENERIC]
    assert registry.ordered_for("Online Banking Co") == [GENERIC]
    assert registry.ordered_for(None) == [GENERIC]


def test_activity_mentioning_totals_balances_or_accounts_is_kept(parser):
    text = "\n".join([
        "01/05/2024 Coffee Shop 4.50",
        "01/06/2024 Total Wine & More 45.00",
        "01/07/2024 Balance Transfer Fee 30.00",
        "01/08/2024 Online transfer to account #12345678 500.00",
        "01/09/2024 Grocery Store 82.10",
    ])

    result = parser.parse(text)

    assert [c.description for c in result.candidates] == [
        "Coffee Shop",
        "Total Wine & More",
        "Balance Transfer Fee",
        "Online transfer to account #12345678",
        "Grocery Store",
    ]
    # a transaction line is not statement metadata
    assert result.header.account_number is None


def test_dated_balance_rows_feed_the_header(parser):
    text = "\n".join([
        "01/01/2024 Beginning balance 1,000.00",
        "01/03/2024 Coffee Shop 4.50 995.50",
        "01/31/2024 Ending balance 995.50",
    ])

    result = parser.parse(text)

    assert [c.description for c in result.candidates] == ["Coffee Shop"]
    assert result.header.opening_balance == "1,000.00"
    assert result.header.closing_balance == "995.50"


def test_chase_unsigned_amounts_are_credits(parser):
    text = "01/15 Zelle From John Smith 200.00 1,404.25\n01/16 Card Purchase Starbucks -5.75 1,398.50"

    result = parser.parse(text, ParseHints(bank_name="Chase", year=2024, month=1))
    txns = AmountNormalizer().normalize_all(result.candidates, "st1", ParseHints(year=2024, month=1)).transactions

    assert [c.sign_hint for c in result.candidates] == ["+", None]
    assert (txns[0].direction, txns[0].amount_minor) == (Direction.CREDIT, 20000)
    assert (txns[1].direction, txns[1].amount_minor) == (Direction.DEBIT, -575)


def test_ing_export_layout_unsigned_amounts_are_credits(parser):
    text = "05-01-2024 Salaris ACME BV 2.500,00\n06-01-2024 Albert Heijn -45,60"

    result = parser.parse(text, ParseHints(bank_name="ING"))

    assert [c.sign_hint for c in result.candidates] == ["+", None]
    assert result.candidates[1].amount_text == "-45,60"


def test_bank_of_america_two_digit_year_layout(parser):
    text = "\n".join([
        "Bank of America, N.A.",
        "01/03/24 CHECKCARD 0102 STARBUCKS -4.50",
        "01/09/24 Payroll Deposit ACME CORP 2,500.00",
    ])

    result = parser.parse(text)

    assert result.header.bank_name == "Bank of America"
    assert result.format_name == "BANK_OF_AMERICA"
    assert [c.date_text for c in result.candidates] == ["01/03/24", "01/09/24"]
    assert [c.sign_hint for c in result.candidates] == [None, "+"]


def test_wells_fargo_check_numbers_are_not_descriptions(parser):
    text = "\n".join([
        "1/3 Purchase authorized on 01/02 Coffee Shop 4.50 995.50",
        "1/5 1234 Check 120.00",
    ])

    result = parser.parse(text, ParseHints(bank_name="Wells Fargo"))

    assert [c.pattern for c in result.candidates] == ["WELLS_FARGO", "WELLS_FARGO"]
    assert result.candidates[0].description == "Purchase authorized on 01/02 Coffee Shop"
    assert result.candidates[0].balance_text == "995.50"
    assert result.candidates[1].description == "Check"
    assert result.candidates[1].amount_text == "120.00"


def test_day_month_name_dates_are_recognised(parser):
    result = parser.parse("15 Jan 2024 Coffee Shop 4.50\n16 Jan 2024 Bakery 6.25 989.25")

    assert [c.date_text for c in result.candidates] == ["15 Jan 2024", "16 Jan 2024"]
    assert result.candidates[1].balance_text == "989.25"


def test_amount_without_decimal_point_is_kept_and_flagged(parser):
    text = "\n".join([
        "01/02/2024 Coffee Shop 45.00",
        "01/03/2024 Bakery 45.00",
        "01/04/2024 Books 45.00",
        "01/05/2024 Grocery 4500000",
    ])

    result = parser.parse(text)
    txns = AmountNormalizer(policy="review").normalize_all(result.candidates, "st1", ParseHints(year=2024)).transactions

    assert result.candidates[3].amount_text == "4500000"
    assert txns[3].flags == [AMOUNT_OUT_OF_RANGE]
    assert txns[3].original_amount_minor == -450000000
    assert txns[3].corrected_amount_minor == -4500


def test_unrecognised_dated_lines_are_reported(parser):
    text = "01/03/2024 Coffee Shop 4.50\n01/04/2024 Card purchase pending\nThank you for banking with us"

    result = parser.parse(text)

    assert len(result.candidates) == 1
    assert result.warnings == ["line 2 unparsed: 01/04/2024 Card purchase pending"]
