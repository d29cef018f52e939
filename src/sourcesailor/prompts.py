"""Prompt templates for the analysis operations.

Each operation has a system prompt (instructions) and a user message builder
that wraps the payload in the tag the instructions refer to.
"""

from __future__ import annotations

COMMON_SYSTEM_PROMPT = """You are a senior software developer who has experience working with almost all the mainstream programming languages.
You can browse through a directory structure and read the files containing a codebase.
Your job is to create a report that outlines the codebase: the programming language used,
the framework(s) used and the functionality provided by the codebase.
If you can figure out the workflows of the app, list them along with the relevant code lines."""

ROOT_UNDERSTANDING_PROMPT = """Based on the given file structure in JSON surrounded by <FileStructure> tag, answer the following questions:
1. Is the repository a monorepo? Give the names of all directories which can be the codebases in the monorepo.
2. If it is a single codebase, what is the programming language and framework used to build this application?
3. If it is a single codebase, give the filename where dependencies are defined, and the dependency lock file.
4. If it is a single codebase, give the filename which can be the entry point of the application.
5. If it is a single codebase, guess the possible workflow of the app.
6. Guess the tree-sitter language name that can parse the source files.

If you think this project is a monorepo consisting of multiple codebases, guess the role of each directory.
Report your answer by calling the provided tool."""

DEPENDENCY_PROMPT = """Here is the dependency file surrounded by <DependencyFile> tag.
Guess the frameworks used to build this part of the application and outline the role of each dependency.
Then validate the workflow given to you in the <Workflow> tag and modify it if necessary."""

CODE_PROMPT = """Based on the codebase provided to you in <Code> tag, explain in concise detail what this codebase does.
Also outline the role and use of each file in the application."""

INTERESTING_CODE_PROMPT = """Based on the codebase provided to you in <Code> tag, list the interesting code parts in the codebase.
Simply say no if all of the code you found is common CRUD code."""

README_PROMPT = """You are writing the README for a codebase.
The directory structure is surrounded by <DirectoryStructure> tag, the dependency analysis by <DependencyInference> tag
and the code analysis by <CodeInference> tag.

Write a README in markdown with this structure:

# <project name>

## Overview
<what the project does, in 2-3 sentences>

## Tech Stack
<language, frameworks and key dependencies>

## Project Structure
<main directories and files and their roles>

## Getting Started
<how to install and run, inferred from dependency and entry point files>

## Workflows
<the main workflows of the application>

Be specific to THIS project, not generic advice."""


def with_expertise(system_prompt: str, user_expertise: str | None = None) -> str:
    """Insert the reader's expertise profile ahead of the instructions."""
    if not user_expertise or not user_expertise.strip():
        return system_prompt
    return (
        "Tailor your answer to the reader described in the <UserExpertise> tag.\n"
        f"<UserExpertise>{user_expertise.strip()}</UserExpertise>\n\n"
        f"{system_prompt}"
    )


def project_directory_message(tree_json: str) -> str:
    return f"<FileStructure>{tree_json}</FileStructure>"


def dependency_message(dependency_file: str, workflow: str) -> str:
    return (
        f"<DependencyFile>{dependency_file}</DependencyFile>\n"
        f"<Workflow>{workflow}</Workflow>"
    )


def code_message(tree_json: str) -> str:
    return f"<Code>{tree_json}</Code>"


def readme_message(directory_structure: str, dependency_inference: str, code_inference: str) -> str:
    return (
        f"<DirectoryStructure>{directory_structure}</DirectoryStructure>\n"
        f"<DependencyInference>{dependency_inference}</DependencyInference>\n"
        f"<CodeInference>{code_inference}</CodeInference>"
    )
