# form_config.py

FIELD_TYPES = (
    "text",
    "email",
    "number",
    "textarea",
    "select",
    "checkbox",
    "radio",
    "date",
    "file",
)

# field types whose answers must come from `options`
CHOICE_TYPES = ("select", "radio", "checkbox")

# free-text answers, the ones analytics reads for sentiment
FREE_TEXT_TYPES = ("text", "textarea")

DEFAULT_SUBMIT_TEXT = "Submit"
DEFAULT_SUCCESS_MESSAGE = "Thank you for your submission!"

# what the creation prompt teaches the model about everyday requests
COMMON_FIELD_MAPPINGS = {
    "name": {"id": "name", "name": "Full Name", "type": "text"},
    "email": {"id": "email", "name": "Email Address", "type": "email"},
    "phone": {"id": "phone", "name": "Phone Number", "type": "text"},
    "age": {"id": "age", "name": "Age", "type": "number"},
    "message": {"id": "message", "name": "Message", "type": "textarea"},
}


def get_field_prompt(field) -> str:
    """
    The question shown for one field when a form is filled step by step.

        **Favourite colour** *(required)*

        Please choose one of the following options:
        • Red
        • Blue
    """
    prompt = f"**{field.name}**"

    if field.required:
        prompt += " *(required)*"

    if field.type == "email":
        prompt += "\n\nPlease enter your email address."
    elif field.type == "number":
        prompt += "\n\nPlease enter a number."
    elif field.type == "textarea":
        prompt += "\n\nPlease provide your response (you can write multiple lines)."
    elif field.type in ("select", "radio"):
        if field.options:
            prompt += "\n\nPlease choose one of the following options:\n" + "\n".join(
                f"• {opt}" for opt in field.options
            )
    elif field.type == "checkbox":
        if field.options:
            prompt += "\n\nPlease select one or more options:\n" + "\n".join(
                f"• {opt}" for opt in field.options
            )
    else:
        prompt += f"\n\n{field.placeholder}" if field.placeholder else "\n\nPlease enter your response."

    return prompt


def get_fallback_question(field) -> str:
    return f"What is your {field.name.lower()}?"
