"""
Loom built-in modules.

A module pairs its *source* (a function defining the script-side classes in
a fresh module scope) with the foreign classes whose methods the source
may declare. Foreign methods receive the VM first, then the call's
arguments.
"""

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple

ForeignMethod = Callable[..., Any]


@dataclass
class ForeignClass:
    """Host implementations of a guest class's foreign methods"""
    methods: Dict[str, ForeignMethod] = field(default_factory=dict)


@dataclass
class Module:
    """A loadable guest module"""
    name: str
    source: Callable[[Any, Any], None]
    classes: Dict[str, ForeignClass] = field(default_factory=dict)
    description: str = ""


class ModuleRegistry:
    """Modules a VM can import, and the lookup used to bind foreign methods"""

    def __init__(self):
        self._modules: Dict[str, Module] = {}

    def register(self, module: Module) -> None:
        if module.name in self._modules:
            raise ValueError(f"Module '{module.name}' already registered")
        self._modules[module.name] = module

    def get_module(self, name: str) -> Optional[Module]:
        return self._modules.get(name)

    def bind_foreign_method(self, module: str, class_name: str, signature: str) -> Optional[ForeignMethod]:
        found = self._modules.get(module)
        if found is None:
            return None
        foreign_class = found.classes.get(class_name)
        if foreign_class is None:
            return None
        return foreign_class.methods.get(signature)

    def names(self) -> List[str]:
        return sorted(self._modules)

    def describe(self) -> List[Tuple[str, str, str]]:
        """Rows of (module, class, foreign signature), sorted."""
        rows = []
        for name in self.names():
            module = self._modules[name]
            for class_name in sorted(module.classes):
                for signature in sorted(module.classes[class_name].methods):
                    rows.append((name, class_name, signature))
        return rows

    def __contains__(self, name: str) -> bool:
        return name in self._modules


def default_registry() -> ModuleRegistry:
    """A registry holding every built-in module"""
    from . import io, os, scheduler, timer

    registry = ModuleRegistry()
    for module in (scheduler.init_module(), timer.init_module(),
                   io.init_module(), os.init_module()):
        registry.register(module)
    return registry


__all__ = [
    'ForeignClass',
    'ForeignMethod',
    'Module',
    'ModuleRegistry',
    'default_registry',
]
