"""
Shared fixtures: a small, valid CommCare package and helpers to write it out
"""
import shutil
import struct
import tempfile
import zipfile
from pathlib import Path

import pytest

from forge.core import cli_validator

PROFILE = """<?xml version='1.0' encoding='UTF-8'?>
<profile xmlns="http://cihi.commcarehq.org/jad" version="1" uniqueid="f00dfeed" name="Patient Tracker" update="http://localhost/profile.ccpr">
  <property key="CommCare App Name" value="Patient Tracker" force="true"/>
  <suite>
    <resource id="suite" version="1">
      <location authority="local">./suite.xml</location>
    </resource>
  </suite>
</profile>
"""

SUITE = """<?xml version='1.0' encoding='UTF-8'?>
<suite version="1">
  <xform>
    <resource id="m0-f0" version="1">
      <location authority="local">./modules-0/forms-0.xml</location>
    </resource>
  </xform>
  <locale language="default">
    <resource id="app_strings" version="1">
      <location authority="local">./default/app_strings.txt</location>
    </resource>
  </locale>
  <entry>
    <form>http://openrosa.org/formdesigner/patient-registration</form>
    <command id="m0-f0">
      <text><locale id="forms.m0f0"/></text>
    </command>
  </entry>
  <menu id="m0">
    <text><locale id="modules.m0"/></text>
    <command id="m0-f0"/>
  </menu>
</suite>
"""

APP_STRINGS = """app.name=Patient Tracker
modules.m0=Patients
forms.m0f0=Register Patient
"""

REGISTRATION_FORM = """<?xml version="1.0" encoding="UTF-8"?>
<h:html xmlns:h="http://www.w3.org/1999/xhtml" xmlns="http://www.w3.org/2002/xforms" xmlns:jr="http://openrosa.org/javarosa">
  <h:head>
    <h:title>Register Patient</h:title>
    <model>
      <instance>
        <data xmlns="http://openrosa.org/formdesigner/patient-registration" uiVersion="1" version="1" name="Register Patient">
          <patient_name/>
          <age/>
          <case xmlns="http://commcarehq.org/case/transaction/v2" case_id="" date_modified="" user_id="">
            <create>
              <case_type/>
              <case_name/>
              <owner_id/>
            </create>
            <update>
              <age/>
            </update>
          </case>
        </data>
      </instance>
      <bind nodeset="/data/patient_name" type="xsd:string" required="true()"/>
      <bind nodeset="/data/age" type="xsd:int"/>
      <bind nodeset="/data/case/@case_id" calculate="uuid()"/>
      <bind nodeset="/data/case/create/case_type" calculate="'patient'"/>
      <bind nodeset="/data/case/create/case_name" calculate="/data/patient_name"/>
      <bind nodeset="/data/case/create/owner_id" calculate="instance('commcaresession')/session/context/userid"/>
      <bind nodeset="/data/case/update/age" calculate="/data/age"/>
      <itext>
        <translation lang="en" default="">
          <text id="patient_name-label">
            <value>Patient Name</value>
          </text>
          <text id="age-label">
            <value>Age</value>
          </text>
        </translation>
      </itext>
    </model>
  </h:head>
  <h:body>
    <input ref="/data/patient_name">
      <label ref="jr:itext('patient_name-label')"/>
    </input>
    <input ref="/data/age">
      <label ref="jr:itext('age-label')"/>
    </input>
  </h:body>
</h:html>
"""

FORM_PATH = "modules-0/forms-0.xml"


@pytest.fixture
def temp_workspace():
    """Create temporary workspace for testing"""
    temp_dir = Path(tempfile.mkdtemp())
    yield temp_dir
    if temp_dir.exists():
        shutil.rmtree(temp_dir)


@pytest.fixture
def valid_texts():
    """Package contents as text, for tests that edit a file before encoding"""
    return {
        "profile.ccpr": PROFILE,
        "suite.xml": SUITE,
        "default/app_strings.txt": APP_STRINGS,
        FORM_PATH: REGISTRATION_FORM,
    }


@pytest.fixture
def valid_files(valid_texts):
    """A FileSet that needs no fixes and passes every HQ rule"""
    return {path: text.encode("utf-8") for path, text in valid_texts.items()}


@pytest.fixture
def write_archive(temp_workspace):
    """Factory: write a FileSet (or text mapping) to a .ccz and return its path"""
    def write(files, name="app.ccz"):
        path = temp_workspace / "input" / name
        path.parent.mkdir(parents=True, exist_ok=True)
        with zipfile.ZipFile(path, "w", compression=zipfile.ZIP_DEFLATED) as archive:
            for entry, content in files.items():
                archive.writestr(entry, content)
        return path
    return write


@pytest.fixture(autouse=True)
def clear_toolchain_cache():
    """Toolchain probe results are process-wide; isolate tests from each other"""
    cli_validator._probe_cache.clear()
    yield
    cli_validator._probe_cache.clear()


@pytest.fixture
def damaged_archive(write_archive, valid_files):
    """Factory: a valid package with its first entry damaged in place

    kind is "deflate" (corrupt compressed stream), "encrypted" (flag bit set
    without a password) or "method" (unsupported compression method).
    """
    def damage(kind):
        path = write_archive(valid_files, name=f"{kind}.ccz")
        data = bytearray(path.read_bytes())
        if kind == "deflate":
            name_len, extra_len = struct.unpack("<HH", data[26:30])
            data[30 + name_len + extra_len] = 0xFF
        else:
            central = data.find(b"PK\x01\x02")
            if kind == "encrypted":
                data[central + 8] |= 0x01
            else:
                data[central + 10:central + 12] = struct.pack("<H", 99)
        path.write_bytes(bytes(data))
        return path
    return damage
