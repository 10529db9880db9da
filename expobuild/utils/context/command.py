#
# Copyright 2024 expobuild Project Authors. All rights reserved.
# Use of this source code is governed by a MIT-style
# license that can be found at
#
# https://opensource.org/license/MIT
#
# The above copyright notice and this permission
# notice shall be included in all copies or
# substantial portions of the Software.

from abc import ABC, abstractmethod

from expobuild.utils.context.context import CliContext
from expobuild.utils.context.namespace import CliNameSpace


# Base class of every command line entry
class CliCommand(ABC):
    @abstractmethod
    def description(self) -> str:
        pass

    @abstractmethod
    def cli(self, argv=None) -> CliNameSpace:
        pass

    @abstractmethod
    def exec(self, context: CliContext, args: CliNameSpace):
        pass
