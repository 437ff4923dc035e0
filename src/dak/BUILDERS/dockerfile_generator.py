# Copyright 2024 Michael Maillet, Damien Davison, Sacha Davison
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""
Generates a Dockerfile from a BuildConfiguration that has none.
"""
import json

from jinja2 import Environment

from ..MODELS.build_config import BuildConfiguration

DOCKERFILE_TEMPLATE = """\
FROM {{ from_image }}
{% if maintainer %}LABEL maintainer={{ maintainer | json }}
{% endif %}{% for k, v in labels.items() %}LABEL {{ k }}={{ v | json }}
{% endfor %}{% for k, v in env.items() %}ENV {{ k }}={{ v | json }}
{% endfor %}{% for port in ports %}EXPOSE {{ port }}
{% endfor %}{% if assembly %}COPY {{ assembly_dir }} {{ assembly_target_dir }}/
{% endif %}{% if workdir %}WORKDIR {{ workdir }}
{% endif %}{% for command in run_commands %}RUN {{ command }}
{% endfor %}{% if volumes %}VOLUME {{ volumes | json_list }}
{% endif %}{% if user %}USER {{ user }}
{% endif %}{% if entrypoint %}ENTRYPOINT {{ entrypoint | json_list }}
{% endif %}{% if cmd %}CMD {{ cmd | json_list }}
{% endif %}"""

DEFAULT_BASE_IMAGE = "busybox:latest"


class DockerfileGenerator:
    """
    Renders the Dockerfile for generated-mode builds.

    Assembly entries are copied into a single directory of the build context
    (``assembly_dir``) and added to the image with one COPY instruction.
    """

    def __init__(self, config: BuildConfiguration, assembly_dir: str = "assembly"):
        self.config = config
        self.assembly_dir = assembly_dir
        environment = Environment()
        environment.filters["json"] = json.dumps
        environment.filters["json_list"] = lambda values: json.dumps(list(values))
        self.template = environment.from_string(DOCKERFILE_TEMPLATE)

    def render(self) -> str:
        """
        :return: the Dockerfile content.
        """
        config = self.config
        return self.template.render(
            from_image=config.from_image or DEFAULT_BASE_IMAGE,
            maintainer=config.maintainer,
            labels=config.labels,
            env=config.env,
            ports=config.ports,
            assembly=config.assembly,
            assembly_dir=self.assembly_dir,
            assembly_target_dir=config.assembly_target_dir.rstrip("/"),
            workdir=config.workdir,
            run_commands=config.run_commands,
            volumes=config.volumes,
            user=config.user,
            entrypoint=config.entrypoint,
            cmd=config.cmd,
        )
