"""Schema injection utilities for Reasoner integration.

Reply models are converted to JSON Schema and injected into system prompts;
raw model output is validated against them, and validation errors are fed
back to the model in a self-correction prompt.
"""

import json
from typing import Dict, Any, Optional, Type
from pydantic import BaseModel, ValidationError


def get_json_schema(model_class: Type[BaseModel]) -> Dict[str, Any]:
    """Convert a Pydantic model to JSON Schema.

    Args:
        model_class: The Pydantic model class to convert.

    Returns:
        JSON Schema dictionary.
    """
    return model_class.model_json_schema()


def validate_and_parse(
    json_str: str, model_class: Type[BaseModel]
) -> tuple[Optional[BaseModel], Optional[str]]:
    """Validate JSON string against Pydantic model.

    Args:
        json_str: JSON string from model output.
        model_class: Pydantic model class to validate against.

    Returns:
        Tuple of (parsed_model, error_message).
        If valid: (model_instance, None)
        If invalid: (None, error_description)
    """
    try:
        data = json.loads(json_str)
        instance = model_class.model_validate(data)
        return instance, None

    except json.JSONDecodeError as e:
        return None, f"Invalid JSON format: {str(e)}"

    except ValidationError as e:
        errors = []
        for error in e.errors():
            field = " -> ".join(str(loc) for loc in error["loc"])
            errors.append(f"Field '{field}': {error['type']} - {error.get('msg', '')}")
        return None, "Validation errors:\n" + "\n".join(errors)

    except (TypeError, ValueError) as e:
        return None, f"Unexpected error during validation: {str(e)}"


def create_self_correction_prompt(
    original_prompt: str, validation_error: str, attempt: int, max_attempts: int = 3
) -> str:
    """Create a self-correction prompt after a reply failed validation.

    Args:
        original_prompt: The original user prompt.
        validation_error: The validation error message.
        attempt: Current attempt number (1-indexed).
        max_attempts: Maximum number of attempts.

    Returns:
        Prompt with validation error feedback appended.
    """
    if attempt >= max_attempts:
        return (
            f"{original_prompt}\n\n"
            f"CRITICAL: Previous attempts failed validation. "
            f"This is attempt {attempt}/{max_attempts}. "
            f"Validation errors from previous attempt:\n{validation_error}\n\n"
            f"Reply with a single JSON object that matches the schema exactly."
        )

    return (
        f"{original_prompt}\n\n"
        f"VALIDATION ERROR (Attempt {attempt}/{max_attempts}):\n"
        f"The previous reply did not match the required schema:\n\n"
        f"{validation_error}\n\n"
        f"Reply with a corrected JSON object."
    )


def inject_schema_into_system_prompt(base_prompt: str, model_class: Type[BaseModel]) -> str:
    """Append the reply schema and output rules to a system prompt.

    Args:
        base_prompt: Role and task instructions for this call site.
        model_class: Reply model the output must validate against.

    Returns:
        System prompt with schema requirements.
    """
    schema_str = json.dumps(get_json_schema(model_class), indent=2)

    return f"""{base_prompt}

You MUST output your response as a single valid JSON object that matches the following schema exactly:

```json
{schema_str}
```

Important constraints:
- All required fields must be present
- confidence values must be between 0.0 and 1.0
- action strings use the wire format, e.g. click(12), setValue(4, "text"), navigate("https://..."), finish("summary")
- Do not output free-form text outside the JSON object
"""
