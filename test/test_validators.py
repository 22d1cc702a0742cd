import pytest
from pydantic import ValidationError

from security.validators import (
    VALIDATORS,
    InputRejected,
    ValidationResult,
    require_valid,
    validate_field,
    validate_file_upload,
    validate_numeric,
)


class TestValidationResult:
    def test_invalid_result_requires_message(self):
        with pytest.raises(ValidationError):
            ValidationResult(valid=False, message="", field="username")

    def test_result_is_immutable(self):
        result = ValidationResult.ok("username")
        with pytest.raises(ValidationError):
            result.valid = False


class TestUsername:
    def test_too_short(self):
        result = VALIDATORS["username"]("ab")
        assert not result.valid
        assert result.field == "username"
        assert "at least 3" in result.message

    def test_valid(self):
        result = VALIDATORS["username"]("valid_user1")
        assert result.valid
        assert result.field == "username"

    @pytest.mark.parametrize("value", ["", "   ", "a" * 31, "bad-name", "name with space"])
    def test_rejected(self, value):
        assert not VALIDATORS["username"](value).valid

    def test_required_check_runs_first(self):
        assert VALIDATORS["username"]("").message == "Username is required"


class TestEmail:
    def test_valid(self):
        assert VALIDATORS["email"]("cook@example.com").valid

    @pytest.mark.parametrize("value", ["", "not-an-email", "a@b", "x" * 250 + "@example.com"])
    def test_rejected(self, value):
        result = VALIDATORS["email"](value)
        assert not result.valid
        assert result.field == "email"


class TestPassword:
    @pytest.mark.parametrize("value,expected", [
        ("abc123", True),
        ("abcdef", False),
        ("123456", False),
        ("a1", False),
        ("a1" * 65, False),
        ("", False),
    ])
    def test_rules(self, value, expected):
        assert VALIDATORS["password"](value).valid is expected


class TestRecipeFields:
    def test_script_title_rejected(self):
        result = VALIDATORS["title"]("<script>alert(1)</script>")
        assert not result.valid
        assert result.field == "title"

    def test_angle_brackets_rejected_in_title(self):
        assert not VALIDATORS["title"]("Pie <3").valid

    def test_plain_title_accepted(self):
        assert VALIDATORS["title"]("Grandma's Lasagna").valid

    def test_title_length(self):
        assert not VALIDATORS["title"]("").valid
        assert not VALIDATORS["title"]("x" * 201).valid

    def test_description_is_optional_but_bounded(self):
        assert VALIDATORS["description"]("").valid
        assert not VALIDATORS["description"]("x" * 1001).valid
        assert not VALIDATORS["description"]("nice <iframe src=x>").valid

    def test_instructions_bounds(self):
        assert not VALIDATORS["instructions"]("").valid
        assert not VALIDATORS["instructions"]("Stir.").valid
        assert VALIDATORS["instructions"]("Mix flour and water, knead 10 minutes.").valid
        assert not VALIDATORS["instructions"]("x" * 10001).valid

    def test_tag_name(self):
        assert VALIDATORS["tag_name"]("gluten-free").valid
        assert not VALIDATORS["tag_name"]("x").valid
        assert not VALIDATORS["tag_name"]("vegan!").valid

    def test_ingredient_name(self):
        assert VALIDATORS["ingredient_name"]("Flour (all-purpose)").valid
        assert not VALIDATORS["ingredient_name"]("salt; DROP TABLE recipes").valid
        assert not VALIDATORS["ingredient_name"]("sugar*").valid


class TestNumeric:
    @pytest.mark.parametrize("field,value,expected", [
        ("prep_time", 0, True),
        ("prep_time", 1441, False),
        ("cook_time", -1, False),
        ("servings", 0, False),
        ("servings", 100, True),
        ("servings", True, False),
    ])
    def test_bounds(self, field, value, expected):
        assert validate_field(field, value).valid is expected

    def test_message_names_field_and_bound(self):
        result = validate_numeric(0, 1, 100, "servings")
        assert result.field == "servings"
        assert result.message == "Servings must be at least 1"


class TestQuantityAndUnit:
    @pytest.mark.parametrize("value", [-1, 0, 10001, float("nan"), "2"])
    def test_invalid_quantity(self, value):
        result = VALIDATORS["quantity"](value)
        assert not result.valid
        assert result.field == "quantity"

    def test_valid_quantity(self):
        assert VALIDATORS["quantity"](2.5).valid

    def test_unit_vocabulary_is_case_insensitive(self):
        assert VALIDATORS["unit"]("TBSP").valid
        assert VALIDATORS["unit"]("to taste").valid
        assert not VALIDATORS["unit"]("handful").valid
        assert not VALIDATORS["unit"]("").valid

    def test_serving_unit_defaults_to_people(self):
        assert VALIDATORS["serving_unit"]("").valid
        assert not VALIDATORS["serving_unit"]("buckets").valid


class TestSearchAndUpload:
    def test_search_query(self):
        assert VALIDATORS["search"]("").valid
        assert VALIDATORS["search"]("lasagna").valid
        assert not VALIDATORS["search"]("x" * 201).valid
        assert not VALIDATORS["search"]("' OR 1=1 --").valid

    @pytest.mark.parametrize("filename,size,expected", [
        ("cake.jpg", 1024, True),
        ("cake.PNG", 1024, True),
        ("cake.exe", 1024, False),
        ("../cake.jpg", 1024, False),
        ("cake.jpg", 6 * 1024 * 1024, False),
    ])
    def test_file_upload(self, filename, size, expected):
        assert validate_file_upload(filename, size).valid is expected


def test_require_valid_raises_400_with_field():
    with pytest.raises(InputRejected) as exc_info:
        require_valid(VALIDATORS["title"]("<script>alert(1)</script>"))
    assert exc_info.value.status_code == 400
    assert exc_info.value.field == "title"


def test_unknown_field_raises_key_error():
    with pytest.raises(KeyError):
        validate_field("nickname", "x")


@pytest.mark.parametrize("registry_name", ["tag_name", "ingredient_name"])
def test_name_validators_report_payload_key(registry_name):
    result = validate_field(registry_name, "<b")
    assert not result.valid
    assert result.field == "name"
