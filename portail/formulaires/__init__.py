from .schema import (  # noqa: F401
    FieldSchema,
    FieldValidation,
    Filiere,
    FormDefinition,
    SchemaError,
    StatusTransition,
    SubmissionRecord,
)
