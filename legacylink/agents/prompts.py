"""Prompt templates for the LLM collaborator."""
from langchain_core.prompts import ChatPromptTemplate

ANALYZE = ChatPromptTemplate.from_messages([
    ("system",
     "You are a mainframe modernization architect. Analyze legacy source code and produce a "
     "system blueprint: business capabilities, legacy data patterns (packed decimals, EBCDIC, "
     "copybooks, file access methods) and a modernization strategy that preserves data integrity."),
    ("human", "Legacy source (may be truncated):\n{source}"),
])

DECOMPOSE = ChatPromptTemplate.from_messages([
    ("system",
     "Split legacy source code into logical business modules. Keep record definitions and file "
     "descriptions together with the logic that uses them. When the input contains "
     "'*> SOURCE_FILE:' markers, return exactly one module per marker, named after the file. "
     "Return every line of the input in exactly one module."),
    ("human", "{source}"),
])

TRANSFORM = ChatPromptTemplate.from_messages([
    ("system",
     "Rewrite a legacy module as a modern Python 3.12 module. Use Decimal for money, never float. "
     "Use pydantic models for records and small repository classes for file access. "
     "The module must be self-contained and importable as `{module_name}`. "
     "Also summarise the business rules in plain English and list legacy-to-modern field mappings."),
    ("human", "Module: {name}\n\nLegacy source:\n{source}"),
])

GENERATE_TESTS = ChatPromptTemplate.from_messages([
    ("system",
     "Write behavioural tests for a Python module translated from legacy code. Tests are plain "
     "functions whose names start with `{prefix}`, use bare assert statements, and run in the same "
     "namespace as the module (its names are already defined; it is also importable as "
     "`{module_name}`). Cover decimal precision, record boundaries and file access through fakes. "
     "Estimate the statement coverage of the suite as an integer percentage."),
    ("human", "Python implementation:\n{candidate}\n\nLegacy reference:\n{source}"),
])

HEAL = ChatPromptTemplate.from_messages([
    ("system",
     "A Python translation of a legacy module fails some of its behavioural tests. Return a complete "
     "corrected module that keeps the legacy semantics and passes the tests. Do not edit the tests. "
     "Explain the fix in one or two sentences."),
    ("human",
     "Module: {name}\n\nLegacy source:\n{source}\n\nCurrent implementation:\n{candidate}\n\n"
     "Tests:\n{tests}\n\nFailures:\n{failures}"),
])
