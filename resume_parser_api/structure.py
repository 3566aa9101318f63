"""Default résumé template, example templates and template validation."""

from dataclasses import dataclass, field

from resume_parser_api.reconciler import JSONValue

DEFAULT_STRUCTURE: dict[str, JSONValue] = {
    "personalInfo": {
        "fullName": "",
        "email": "",
        "phone": "",
        "location": "",
        "linkedinUrl": "",
        "githubUrl": "",
        "portfolioUrl": "",
    },
    "summary": "",
    "experience": [
        {
            "company": "",
            "position": "",
            "startDate": "",
            "endDate": "",
            "location": "",
            "description": "",
            "achievements": "",
        }
    ],
    "education": [
        {
            "institution": "",
            "degree": "",
            "field": "",
            "startDate": "",
            "endDate": "",
            "gpa": "",
            "achievements": "",
        }
    ],
    "skills": {
        "technical": "",
        "soft": "",
        "tools": "",
        "frameworks": "",
        "languages": "",
    },
    "certifications": [
        {
            "name": "",
            "issuer": "",
            "date": "",
            "expiryDate": "",
            "credentialId": "",
        }
    ],
    "languages": [{"name": "", "proficiency": ""}],
    "projects": [
        {
            "name": "",
            "description": "",
            "technologies": "",
            "url": "",
            "githubUrl": "",
            "startDate": "",
            "endDate": "",
        }
    ],
    "achievements": "",
}

EXAMPLE_STRUCTURES: dict[str, dict[str, JSONValue]] = {
    "minimal": {
        "name": "",
        "email": "",
        "phone": "",
        "skills": "",
        "summary": "",
    },
    "hr_focused": {
        "candidate": {
            "fullName": "",
            "contactInfo": {"email": "", "phone": "", "location": ""},
        },
        "workHistory": [
            {"employer": "", "jobTitle": "", "duration": "", "responsibilities": ""}
        ],
        "qualifications": {"education": "", "certifications": "", "coreSkills": ""},
    },
    "technical": {
        "developer": {"name": "", "contact": "", "githubProfile": ""},
        "technicalSkills": {
            "programmingLanguages": "",
            "frameworks": "",
            "databases": "",
            "tools": "",
        },
        "projects": [{"title": "", "description": "", "techStack": "", "repositoryUrl": ""}],
        "experience": [{"company": "", "role": "", "duration": "", "keyAchievements": ""}],
    },
}

CATEGORY_NAMES = {
    "personalInfo": "Personal Information",
    "summary": "Professional Summary",
    "experience": "Work Experience",
    "education": "Education",
    "skills": "Skills",
    "certifications": "Certifications",
    "languages": "Languages",
    "projects": "Projects",
    "achievements": "Achievements",
}

MAX_RECOMMENDED_FIELDS = 100


def list_field_paths(template: JSONValue, prefix: str = "") -> list[str]:
    """Leaf field paths of a template, e.g. ``experience[].company``."""
    if not isinstance(template, dict):
        return []

    paths: list[str] = []
    for key, value in template.items():
        path = f"{prefix}.{key}" if prefix else key
        if isinstance(value, dict) and value:
            paths.extend(list_field_paths(value, path))
        elif isinstance(value, list) and value and isinstance(value[0], dict):
            paths.extend(list_field_paths(value[0], f"{path}[]"))
        else:
            paths.append(path)
    return paths


def categorize_fields(template: JSONValue) -> dict[str, list[str]]:
    """Group leaf paths by their top-level key, using display names where known."""
    categories: dict[str, list[str]] = {}
    for path in list_field_paths(template):
        top_level = path.split(".", 1)[0].removesuffix("[]")
        categories.setdefault(CATEGORY_NAMES.get(top_level, top_level), []).append(path)
    return categories


FIELD_PATHS = list_field_paths(DEFAULT_STRUCTURE)
FIELD_CATEGORIES = categorize_fields(DEFAULT_STRUCTURE)


def _nested_object(value: JSONValue) -> JSONValue | None:
    # Record arrays are described by their first element
    if isinstance(value, dict):
        return value
    if isinstance(value, list) and value:
        return value[0]
    return None


def count_fields(structure: JSONValue) -> int:
    """Number of keys in a template, descending into objects and record arrays."""
    if not isinstance(structure, dict):
        return 0

    count = 0
    for value in structure.values():
        count += 1
        count += count_fields(_nested_object(value))
    return count


def get_field_names(structure: JSONValue) -> list[str]:
    """All key names in a template, depth first."""
    if not isinstance(structure, dict):
        return []

    names: list[str] = []
    for key, value in structure.items():
        names.append(key)
        names.extend(get_field_names(_nested_object(value)))
    return names


@dataclass
class StructureValidation:
    """Verdict on a caller-supplied template."""

    valid: bool
    errors: list[str] = field(default_factory=list)
    suggestions: list[str] = field(default_factory=list)
    field_count: int = 0


def validate_structure(structure: JSONValue) -> StructureValidation:
    """Check that a template is usable before it is sent with an upload."""
    if isinstance(structure, list):
        return StructureValidation(
            valid=False, errors=["Root structure cannot be an array, must be an object"]
        )
    if not isinstance(structure, dict):
        return StructureValidation(valid=False, errors=["Structure must be a valid JSON object"])

    errors: list[str] = []
    suggestions: list[str] = []

    field_count = count_fields(structure)
    if field_count == 0:
        errors.append("Structure appears to be empty")
    if field_count > MAX_RECOMMENDED_FIELDS:
        suggestions.append("Large structures may impact performance. Consider simplifying.")

    if any(" " in name for name in get_field_names(structure)):
        suggestions.append(
            "Consider using camelCase or snake_case instead of spaces in field names"
        )

    return StructureValidation(
        valid=not errors,
        errors=errors,
        suggestions=suggestions,
        field_count=field_count,
    )
