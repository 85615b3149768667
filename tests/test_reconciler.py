"""Tests for merging sources and the GATT session table."""

import pytest

from bluecharge.core.provider import BatteryUpdate, Connected, Disconnected
from bluecharge.core.reconciler import (
    DEFAULT_GATT_NAME,
    DeviceReconciler,
    GattDeviceTable,
    merge_sources,
)
from bluecharge.core.types import (
    GENERIC_DEVICE_NAME,
    DeviceKind,
    DeviceRecord,
    ParsedDiagnosticEntry,
    SourceType,
)
from bluecharge.providers.kernel import KernelBatterySource

from conftest import KEYBOARD_ADDR, MOUSE_ADDR, PODS_ADDR, FakeBackend, kernel_record


def gatt_record(session_id, name, level, address=None):
    return DeviceRecord.create(
        id=GattDeviceTable.device_id(session_id), name=name, battery_level=level,
        address=address, source=SourceType.GATT,
    )


@pytest.fixture
def earbuds_entry():
    return ParsedDiagnosticEntry(
        address=PODS_ADDR, name="AirPods Pro", left=90, right=85, case=70,
        minor_type="Headphones",
    )


class TestMergeSources:

    def test_kernel_device_without_diagnostic_entry(self):
        """A kernel-only mouse comes through unchanged with no components."""
        mouse = kernel_record(MOUSE_ADDR, "Magic Mouse", 40)

        merged = merge_sources([mouse], [], {})

        assert len(merged) == 1
        assert merged[0].name == "Magic Mouse"
        assert merged[0].battery_level == 40
        assert merged[0].kind is DeviceKind.MOUSE
        assert merged[0].components is None

    def test_kernel_mouse_with_matching_report_entry(self, mouse_battery):
        """Report entry at the same address adds no components and no duplicate."""
        entry = ParsedDiagnosticEntry(address=MOUSE_ADDR, name="Magic Mouse")
        diagnostic_map = {MOUSE_ADDR: entry}
        kernel = KernelBatterySource([FakeBackend([mouse_battery])]).poll(diagnostic_map)

        merged = merge_sources(kernel, [], diagnostic_map)

        assert len(merged) == 1
        assert merged[0].id == MOUSE_ADDR
        assert merged[0].name == "Magic Mouse"
        assert merged[0].battery_level == 40
        assert merged[0].components is None

    def test_diagnostic_only_earbuds(self, earbuds_entry):
        """Earbuds seen only in the report get the mean of their parts."""
        merged = merge_sources([], [], {PODS_ADDR: earbuds_entry})

        assert len(merged) == 1
        pods = merged[0]
        assert pods.id == PODS_ADDR
        assert pods.battery_level == 81
        assert pods.kind is DeviceKind.AUDIO
        assert pods.source is SourceType.DIAGNOSTIC
        assert pods.component_text == "L:90% R:85% C:70%"

    def test_diagnostic_main_level_preferred(self):
        entry = ParsedDiagnosticEntry(address=PODS_ADDR, name="AirPods Pro",
                                      battery=55, left=90, right=85)
        merged = merge_sources([], [], {PODS_ADDR: entry})
        assert merged[0].battery_level == 55

    def test_gatt_record_added_when_kernel_silent(self):
        merged = merge_sources([], [gatt_record("s1", "Keys", 60)], {})
        assert [d.id for d in merged] == ["ble-s1"]

    def test_gatt_record_shadowed_by_kernel_address(self):
        mouse = kernel_record(MOUSE_ADDR, "Magic Mouse", 40)
        dup = gatt_record("s1", "Magic Mouse", 41, address=MOUSE_ADDR)

        merged = merge_sources([mouse], [dup], {})

        assert [d.id for d in merged] == [MOUSE_ADDR]
        assert merged[0].battery_level == 40

    def test_diagnostic_entry_shadowed_by_kernel_address(self):
        keyboard = kernel_record(KEYBOARD_ADDR, "Magic Keyboard", 70)
        entry = ParsedDiagnosticEntry(address=KEYBOARD_ADDR, name="Magic Keyboard", battery=75)

        merged = merge_sources([keyboard], [], {KEYBOARD_ADDR: entry})

        assert len(merged) == 1
        assert merged[0].battery_level == 70

    def test_diagnostic_entry_shadowed_by_name(self):
        """Same device seen over GATT under a different identity."""
        gatt = gatt_record("s1", "Magic Keyboard", 70)
        entry = ParsedDiagnosticEntry(address=KEYBOARD_ADDR, name="Magic Keyboard", battery=75)

        merged = merge_sources([], [gatt], {KEYBOARD_ADDR: entry})

        assert [d.id for d in merged] == ["ble-s1"]

    def test_unnamed_diagnostic_entries_collide_on_generic_name(self):
        """Names that sanitize away both become "Bluetooth Device"; keep one."""
        first = ParsedDiagnosticEntry(address=KEYBOARD_ADDR, name="\x00\x01", battery=50)
        second = ParsedDiagnosticEntry(address=PODS_ADDR, name="\u200b", battery=60)

        merged = merge_sources([], [], {KEYBOARD_ADDR: first, PODS_ADDR: second})

        assert len(merged) == 1
        assert merged[0].name == GENERIC_DEVICE_NAME

    def test_unnamed_diagnostic_entry_shadowed_by_generic_kernel_name(self):
        kernel = kernel_record(MOUSE_ADDR, "", 40)
        entry = ParsedDiagnosticEntry(address=KEYBOARD_ADDR, name="\x07", battery=75)

        merged = merge_sources([kernel], [], {KEYBOARD_ADDR: entry})

        assert [d.id for d in merged] == [MOUSE_ADDR]

    def test_diagnostic_entry_without_battery_is_skipped(self):
        entry = ParsedDiagnosticEntry(address=KEYBOARD_ADDR, name="Magic Keyboard")
        assert merge_sources([], [], {KEYBOARD_ADDR: entry}) == []

    def test_duplicate_kernel_ids_keep_first(self):
        a = kernel_record(MOUSE_ADDR, "Magic Mouse", 40)
        b = kernel_record(MOUSE_ADDR, "Magic Mouse", 90)
        merged = merge_sources([a, b], [], {})
        assert len(merged) == 1
        assert merged[0].battery_level == 40

    def test_sorted_by_name(self, earbuds_entry):
        mouse = kernel_record(MOUSE_ADDR, "Magic Mouse", 40)
        keys = gatt_record("s1", "Keychron K2", 60)

        merged = merge_sources([mouse], [keys], {PODS_ADDR: earbuds_entry})

        assert [d.name for d in merged] == ["AirPods Pro", "Keychron K2", "Magic Mouse"]


class TestDeviceReconciler:

    def test_change_detection(self):
        reconciler = DeviceReconciler()
        mouse = kernel_record(MOUSE_ADDR, "Magic Mouse", 40)

        first = reconciler.update([mouse], [], {})
        second = reconciler.update([mouse], [], {})
        third = reconciler.update([kernel_record(MOUSE_ADDR, "Magic Mouse", 39)], [], {})

        assert first.changed
        assert not second.changed
        assert third.changed
        assert reconciler.devices[0].battery_level == 39

    def test_component_change_is_a_change(self, earbuds_entry):
        reconciler = DeviceReconciler()
        reconciler.update([], [], {PODS_ADDR: earbuds_entry})

        moved = ParsedDiagnosticEntry(address=PODS_ADDR, name="AirPods Pro",
                                      left=90, right=85, case=71)
        result = reconciler.update([], [], {PODS_ADDR: moved})

        assert result.changed

    def test_reconcile_does_not_touch_state(self):
        reconciler = DeviceReconciler()
        reconciler.reconcile([kernel_record(MOUSE_ADDR, "Magic Mouse", 40)], [], {})
        assert reconciler.devices == []

    def test_reset(self):
        reconciler = DeviceReconciler()
        reconciler.update([kernel_record(MOUSE_ADDR, "Magic Mouse", 40)], [], {})
        reconciler.reset()
        assert reconciler.devices == []


class TestGattDeviceTable:

    @pytest.fixture
    def table(self):
        return GattDeviceTable(grace_period=15.0, rescan_delay=2.0)

    def test_battery_update_creates_record(self, table):
        changed = table.apply(BatteryUpdate("s1", 50, name="Keychron K2",
                                            address="AA:BB:CC:DD:EE:FF"), now=0)

        assert changed
        record = table.devices()[0]
        assert record.id == "ble-s1"
        assert record.name == "Keychron K2"
        assert record.address == MOUSE_ADDR
        assert record.source is SourceType.GATT

    def test_repeat_update_is_not_a_change(self, table):
        table.apply(BatteryUpdate("s1", 50, name="Keys"), now=0)
        assert not table.apply(BatteryUpdate("s1", 50), now=1)
        assert table.apply(BatteryUpdate("s1", 49), now=2)

    def test_name_from_connect_event(self, table):
        table.apply(Connected("s1", name="Keys"), now=0)
        table.apply(BatteryUpdate("s1", 50), now=1)
        assert table.devices()[0].name == "Keys"

    def test_default_name(self, table):
        table.apply(BatteryUpdate("s1", 50), now=0)
        assert table.devices()[0].name == DEFAULT_GATT_NAME

    def test_disconnect_keeps_record_for_grace_period(self, table):
        table.apply(BatteryUpdate("s1", 50, name="Keys"), now=100)
        table.apply(Disconnected("s1"), now=100)

        assert table.is_pending_removal("s1")
        assert table.expire(now=114) == []
        assert len(table.devices()) == 1

        assert table.expire(now=115) == ["ble-s1"]
        assert table.devices() == []
        assert not table.is_pending_removal("s1")

    def test_reconnect_cancels_removal(self, table):
        table.apply(BatteryUpdate("s1", 50, name="Keys"), now=100)
        table.apply(Disconnected("s1"), now=100)
        table.apply(Connected("s1"), now=105)

        assert not table.is_pending_removal("s1")
        assert table.expire(now=200) == []
        assert len(table.devices()) == 1

    def test_battery_update_cancels_removal(self, table):
        table.apply(BatteryUpdate("s1", 50), now=100)
        table.apply(Disconnected("s1"), now=100)
        table.apply(BatteryUpdate("s1", 48), now=110)

        assert table.expire(now=200) == []
        assert table.devices()[0].battery_level == 48

    def test_rescan_due_once_after_disconnect(self, table):
        table.apply(BatteryUpdate("s1", 50), now=100)
        table.apply(Disconnected("s1"), now=100)

        assert not table.take_rescan_due(now=101)
        assert table.take_rescan_due(now=102)
        assert not table.take_rescan_due(now=103)

    def test_unknown_session_disconnect_still_rescans(self, table):
        table.apply(Disconnected("ghost"), now=0)
        assert not table.is_pending_removal("ghost")
        assert table.take_rescan_due(now=2)

    def test_next_deadline(self, table):
        assert table.next_deadline() is None
        table.apply(BatteryUpdate("s1", 50), now=100)
        table.apply(Disconnected("s1"), now=100)
        assert table.next_deadline() == 102
        table.take_rescan_due(now=102)
        assert table.next_deadline() == 115

    def test_clear(self, table):
        table.apply(BatteryUpdate("s1", 50), now=0)
        table.apply(Disconnected("s1"), now=0)
        table.clear()
        assert table.devices() == []
        assert table.next_deadline() is None
