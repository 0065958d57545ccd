"""
Job descriptor for the BVT job.

The service accepts jobs as an XML document:

    <Job Name="SimpleJob">
      <Tasks>
        <Task CommandLine="echo Hello" MinCores="1" MaxCores="1" />
      </Tasks>
    </Job>
"""

import xml.etree.ElementTree as ET
from dataclasses import dataclass
from pathlib import Path
from typing import Tuple, Union


@dataclass(frozen=True)
class TaskSpec:
    """A single task: command line and core-count bounds."""

    command_line: str
    min_cores: int = 1
    max_cores: int = 1


@dataclass(frozen=True)
class JobDescriptor:
    """Job name plus its ordered tasks."""

    name: str
    tasks: Tuple[TaskSpec, ...]

    def to_xml(self) -> str:
        """Render the descriptor as the XML job file the service expects."""
        job = ET.Element("Job", {"Name": self.name})
        tasks = ET.SubElement(job, "Tasks")
        for task in self.tasks:
            ET.SubElement(tasks, "Task", {
                "CommandLine": task.command_line,
                "MinCores": str(task.min_cores),
                "MaxCores": str(task.max_cores),
            })
        ET.indent(job)
        return ET.tostring(job, encoding="unicode")

    @classmethod
    def from_xml(cls, xml_text: str) -> "JobDescriptor":
        """
        Parse a descriptor from XML.

        Raises:
            ValueError: If the document is not a <Job> with at least one <Task>
        """
        try:
            root = ET.fromstring(xml_text)
        except ET.ParseError as e:
            raise ValueError(f"Invalid job XML: {e}")

        if root.tag != "Job":
            raise ValueError(f"Expected <Job> root element, got <{root.tag}>")

        tasks = tuple(
            TaskSpec(
                command_line=element.get("CommandLine", ""),
                min_cores=int(element.get("MinCores", "1")),
                max_cores=int(element.get("MaxCores", "1")),
            )
            for element in root.iter("Task")
        )
        if not tasks:
            raise ValueError("Job XML must contain at least one <Task>")

        return cls(name=root.get("Name", ""), tasks=tasks)

    @classmethod
    def from_file(cls, path: Union[str, Path]) -> "JobDescriptor":
        """Load a descriptor from an XML file."""
        return cls.from_xml(Path(path).read_text(encoding="utf-8"))


def default_descriptor() -> JobDescriptor:
    """The single-task job used by the BVT."""
    return JobDescriptor(
        name="SimpleJob",
        tasks=(TaskSpec(command_line="echo Hello", min_cores=1, max_cores=1),),
    )
