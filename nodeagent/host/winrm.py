import base64
import json
import logging
from xml.etree import ElementTree

import urllib3
import winrm
from requests.exceptions import RequestException
from winrm.exceptions import InvalidCredentialsError, WinRMError, WinRMTransportError

from nodeagent.errors import ConnectionFailedError, InvalidParameterError, OperationFailedError
from nodeagent.jobs import raise_for_code

from . import base
from .base import HostControlInterface, escape_wql

# Silencia avisos de certificado auto-assinado (comum no listener HTTPS do WinRM)
urllib3.disable_warnings(urllib3.exceptions.InsecureRequestWarning)

# Envelope comum: decodifica os parâmetros e devolve {ok, data} ou {ok, error, hresult} em JSON
_PRELUDE = r"""
$ErrorActionPreference = 'Stop'
$ProgressPreference = 'SilentlyContinue'
$p = [Text.Encoding]::UTF8.GetString([Convert]::FromBase64String('{params}')) | ConvertFrom-Json
function Row($o) {{ $h = @{{ '__PATH' = $o.__PATH }}; foreach ($q in $o.Properties) {{ $h[$q.Name] = $q.Value }}; $h }}
try {{
    $r = & {{
{body}
    }}
    @{{ ok = $true; data = $r }} | ConvertTo-Json -Depth 8 -Compress
}} catch {{
    @{{ ok = $false; error = $_.Exception.Message; hresult = $_.Exception.HResult }} | ConvertTo-Json -Compress
}}
"""

_EMBED = r"""
function E($v) {
    if ($v -is [array]) { return ,@($v | ForEach-Object { E $_ }) }
    if ($v -is [pscustomobject]) {
        if ($v.__PATH) { $i = [wmi]$v.__PATH }
        else { $i = ([wmiclass]"\\.\$($p.ns):$($v.__CLASS)").CreateInstance() }
        foreach ($q in $v.PSObject.Properties) { if ($q.Name -notlike '__*') { $i[$q.Name] = $q.Value } }
        return $i.GetText(1)
    }
    $v
}
"""

_CLUSTER_CMDLETS = {
    base.KIND_NODE: 'ClusterNode',
    base.KIND_GROUP: 'ClusterGroup',
    base.KIND_RESOURCE: 'ClusterResource',
}

_CLUSTER_CONTROLS = {
    (base.KIND_NODE, 'pause'): "Suspend-ClusterNode -Cluster $p.cluster -Name $p.name | Out-Null",
    (base.KIND_NODE, 'resume'): "Resume-ClusterNode -Cluster $p.cluster -Name $p.name | Out-Null",
    (base.KIND_GROUP, 'online'): "Start-ClusterGroup -Cluster $p.cluster -Name $p.name -Wait 0 | Out-Null",
    (base.KIND_GROUP, 'offline'): "Stop-ClusterGroup -Cluster $p.cluster -Name $p.name -Wait 0 | Out-Null",
    (base.KIND_GROUP, 'move'): (
        "Move-ClusterGroup -Cluster $p.cluster -Name $p.name -Node $p.target -Wait 0 | Out-Null"
    ),
    (base.KIND_RESOURCE, 'online'): "Start-ClusterResource -Cluster $p.cluster -Name $p.name -Wait 0 | Out-Null",
    (base.KIND_RESOURCE, 'offline'): "Stop-ClusterResource -Cluster $p.cluster -Name $p.name -Wait 0 | Out-Null",
}

# Estados transitórios: o comando foi aceito e segue em execução no cluster
_PENDING_STATES = {
    base.KIND_NODE: (3,),
    base.KIND_GROUP: (4,),
    base.KIND_RESOURCE: (128, 129, 130),
}

_WMI_NAME_QUERIES = {
    base.KIND_VM: "SELECT ElementName FROM Msvm_ComputerSystem WHERE Caption = 'Virtual Machine'",
    base.KIND_SWITCH: "SELECT ElementName FROM Msvm_VirtualEthernetSwitch",
}

_WMI_OPEN_QUERIES = {
    base.KIND_VM: (
        "SELECT * FROM Msvm_ComputerSystem WHERE Caption = 'Virtual Machine' AND ElementName = '{name}'"
    ),
    base.KIND_SWITCH: "SELECT * FROM Msvm_VirtualEthernetSwitch WHERE ElementName = '{name}'",
    base.KIND_POOL: (
        "SELECT * FROM Msvm_ResourcePool WHERE ResourceSubType = '{name}' AND Primordial = TRUE"
    ),
}

_SNAPSHOTS_OF = (
    "ASSOCIATORS OF {{{path}}} WHERE AssocClass = Msvm_SnapshotOfVirtualSystem "
    "ResultClass = Msvm_VirtualSystemSettingData"
)


def _as_list(value):
    # ConvertTo-Json colapsa listas de um item e omite listas vazias
    if value is None:
        return []
    if isinstance(value, list):
        return value
    return [value]


def _coerce(text, cim_type):
    if text is None:
        return None
    if cim_type and cim_type.startswith(('uint', 'sint')):
        return int(text)
    if cim_type == 'boolean':
        return text.lower() == 'true'
    return text


def decode_embedded(text):
    """Converte uma instância embutida (CIM-XML, DTD 2.0) em dicionário."""
    root = ElementTree.fromstring(text)
    data = {'__CLASS': root.get('CLASSNAME')}
    for prop in root:
        name = prop.get('NAME')
        if prop.tag == 'PROPERTY.ARRAY':
            data[name] = [_coerce(v.text, prop.get('TYPE')) for v in prop.iter('VALUE')]
        elif prop.tag == 'PROPERTY':
            value = prop.find('VALUE')
            data[name] = _coerce(value.text if value is not None else None, prop.get('TYPE'))
    return data


class ClusterObject:
    """Handle bruto de uma entidade do cluster (o WinRM não mantém estado no servidor)."""

    def __init__(self, kind, name, cluster):
        self.kind = kind
        self.name = name
        self.cluster = cluster

    def __repr__(self):
        return f"ClusterObject({self.kind}, {self.name!r}, cluster={self.cluster!r})"


class WinRMHost(HostControlInterface):
    """
    Host Control Interface sobre WinRM.
    Objetos Hyper-V via WMI (namespace de virtualização) e cluster via módulo FailoverClusters,
    ambos executados como scripts PowerShell que devolvem JSON.
    """

    def __init__(self, host, user=None, password=None, transport='ntlm', port=None,
                 use_ssl=False, verify_ssl=False, namespace='root\\virtualization\\v2'):
        scheme = 'https' if use_ssl else 'http'
        port = port or (5986 if use_ssl else 5985)
        self.host = host
        self.endpoint = f"{scheme}://{host}:{port}/wsman"
        self.namespace = namespace
        self.session = winrm.Session(
            self.endpoint,
            auth=(user, password),
            transport=transport,
            server_cert_validation='validate' if verify_ssl else 'ignore',
        )
        self._cursors = {}
        self._next_cursor = 1
        self.logger = logging.getLogger(__name__)

    # --- Execução ---

    def _run(self, body, **params):
        """Executa o script e retorna o envelope {ok, data | error, hresult}."""
        params.setdefault('ns', self.namespace)
        encoded = base64.b64encode(json.dumps(params).encode('utf-8')).decode('ascii')
        script = _PRELUDE.format(params=encoded, body=body)

        try:
            response = self.session.run_ps(script)
        except (InvalidCredentialsError, WinRMTransportError, WinRMError, RequestException) as e:
            self.logger.error(f"WinRM: falha ao falar com {self.endpoint}: {e}")
            raise ConnectionFailedError(f"Host {self.host} inacessível: {e}") from e

        output = response.std_out.decode('utf-8', errors='replace').strip()
        if response.status_code != 0 or not output:
            error = response.std_err.decode('utf-8', errors='replace').strip()
            raise OperationFailedError(
                f"Script PowerShell falhou em {self.host}", code=response.status_code, description=error
            )
        return json.loads(output.splitlines()[-1])

    def _call(self, body, operation, **params):
        """Como _run, mas levanta o erro tipado quando o script falha."""
        envelope = self._run(body, **params)
        if envelope.get('ok'):
            return envelope.get('data')
        self._raise_for_envelope(envelope, operation)

    @staticmethod
    def _raise_for_envelope(envelope, operation):
        message = envelope.get('error')
        hresult = envelope.get('hresult')
        if hresult is None:
            raise OperationFailedError(f"{operation} falhou", description=message)

        hresult &= 0xFFFFFFFF
        # FACILITY_WIN32: os 16 bits baixos são o código Win32 original
        if (hresult >> 16) & 0x1FFF == 7:
            raise_for_code(hresult & 0xFFFF, operation, message)
        raise OperationFailedError(f"{operation} falhou", code=hresult, description=message)

    # --- Handles ---

    def open_container(self, kind, name=None):
        if kind == base.KIND_HOST:
            return self.namespace
        if kind != base.KIND_CLUSTER:
            raise InvalidParameterError(f"Container desconhecido: {kind}")

        body = "$(if ($p.name) { (Get-Cluster -Name $p.name).Name } else { (Get-Cluster).Name })"
        return self._call(body, 'open cluster', name=name)

    def open(self, container, kind, name):
        if kind in _CLUSTER_CMDLETS:
            body = (
                f"[bool](Get-{_CLUSTER_CMDLETS[kind]} -Cluster $p.cluster -Name $p.name "
                "-ErrorAction SilentlyContinue)"
            )
            exists = self._call(body, f"open {kind}", cluster=container, name=name)
            return ClusterObject(kind, name, container) if exists else None

        if kind == base.KIND_VHD:
            exists = self._call("Test-Path -LiteralPath $p.name -PathType Leaf", 'open vhd', name=name)
            return name if exists else None

        if kind == base.KIND_SNAPSHOT:
            items = self.associators(
                container, assoc_class='Msvm_SnapshotOfVirtualSystem',
                result_class='Msvm_VirtualSystemSettingData',
            )
            match = [i for i in items if i.get('ElementName') == name]
            return match[0]['__PATH'] if match else None

        if kind in _WMI_OPEN_QUERIES:
            rows = self.query(_WMI_OPEN_QUERIES[kind].format(name=escape_wql(name)))
            return rows[0]['__PATH'] if rows else None

        raise InvalidParameterError(f"Tipo de entidade desconhecido: {kind}")

    def close(self, raw):
        # Sem estado no servidor: nada a liberar
        pass

    def container_name(self, container):
        return container

    # --- Enumeração ---

    def _list_names(self, container, kind):
        if kind in _CLUSTER_CMDLETS:
            body = f"@(Get-{_CLUSTER_CMDLETS[kind]} -Cluster $p.cluster | ForEach-Object {{ $_.Name }})"
            return _as_list(self._call(body, f"enumerate {kind}", cluster=container))
        if kind == base.KIND_SNAPSHOT:
            return [r.get('ElementName') for r in self.query(_SNAPSHOTS_OF.format(path=container))]
        if kind == base.KIND_POOL:
            rows = self.query("SELECT ResourceSubType FROM Msvm_ResourcePool WHERE Primordial = TRUE")
            return [r.get('ResourceSubType') for r in rows]
        if kind in _WMI_NAME_QUERIES:
            return [r.get('ElementName') for r in self.query(_WMI_NAME_QUERIES[kind])]
        raise InvalidParameterError(f"Enumeração não suportada para {kind}")

    def open_enum(self, container, kind):
        cursor = self._next_cursor
        self._next_cursor += 1
        self._cursors[cursor] = [n for n in self._list_names(container, kind) if n]
        return cursor

    def enum_item(self, cursor, index, buffer_size=0):
        names = self._cursors[cursor]
        if index >= len(names):
            return base.ERROR_NO_MORE_ITEMS, None, 0
        name = names[index]
        required = len(name) + 1
        if buffer_size < required:
            return base.ERROR_MORE_DATA, None, required
        return base.ERROR_SUCCESS, name, required

    def close_enum(self, cursor):
        self._cursors.pop(cursor, None)

    # --- Estado e controle ---

    def get_state(self, raw):
        if isinstance(raw, ClusterObject):
            body = (
                f"$o = Get-{_CLUSTER_CMDLETS[raw.kind]} -Cluster $p.cluster -Name $p.name; "
                "@{ state = [int]$o.State; owner = $(if ($o.OwnerNode) { $o.OwnerNode.Name }) }"
            )
            data = self._call(body, f"state {raw.kind}", cluster=raw.cluster, name=raw.name)
            return data.get('state'), data.get('owner')

        data = self.get_object(raw)
        return (data or {}).get('EnabledState'), None

    def control(self, raw, operation, target=None):
        command = _CLUSTER_CONTROLS.get((raw.kind, operation))
        if command is None:
            raise InvalidParameterError(f"Operação '{operation}' não suportada para {raw.kind}")

        pending = ', '.join(str(s) for s in _PENDING_STATES[raw.kind])
        body = (
            f"{command}\n"
            f"$s = [int](Get-{_CLUSTER_CMDLETS[raw.kind]} -Cluster $p.cluster -Name $p.name).State\n"
            f"if (@({pending}) -contains $s) {{ {base.ERROR_IO_PENDING} }} else {{ 0 }}"
        )
        return self._call(body, f"{operation} {raw.name}", cluster=raw.cluster, name=raw.name, target=target)

    # --- WMI ---

    def query(self, wql, namespace=None):
        body = "@(Get-WmiObject -Namespace $p.ns -Query $p.wql | ForEach-Object { Row $_ })"
        params = {'wql': wql}
        if namespace:
            params['ns'] = namespace
        return _as_list(self._call(body, 'query', **params))

    def get_object(self, path):
        body = "try { Row ([wmi]$p.path) } catch { $null }"
        return self._call(body, 'get object', path=path)

    def associators(self, path, assoc_class=None, result_class=None):
        wql = f"ASSOCIATORS OF {{{path}}}"
        clauses = []
        if assoc_class:
            clauses.append(f"AssocClass = {assoc_class}")
        if result_class:
            clauses.append(f"ResultClass = {result_class}")
        if clauses:
            wql = f"{wql} WHERE {' '.join(clauses)}"
        return self.query(wql)

    def references(self, path, result_class=None):
        wql = f"REFERENCES OF {{{path}}}"
        if result_class:
            wql = f"{wql} WHERE ResultClass = {result_class}"
        return self.query(wql)

    def invoke(self, path, method, **params):
        body = _EMBED + (
            "$o = [wmi]$p.path\n"
            "$in = $o.GetMethodParameters($p.method)\n"
            "foreach ($k in $p.args.PSObject.Properties) { $in[$k.Name] = E $k.Value }\n"
            "$out = $o.InvokeMethod($p.method, $in, $null)\n"
            "$h = @{}; foreach ($q in $out.Properties) { $h[$q.Name] = $q.Value }; $h"
        )
        out = self._call(body, method, path=path, method=method, args=params) or {}
        for key, value in out.items():
            if isinstance(value, str) and value.startswith('<INSTANCE'):
                out[key] = decode_embedded(value)
        self.logger.debug(f"{method} em {path}: ReturnValue={out.get('ReturnValue')}")
        return out
